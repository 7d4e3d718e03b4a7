"""iCalendar codec for single-event documents.

``serialize`` turns an :class:`EventSpec` into a VCALENDAR envelope holding
exactly one VEVENT (plus one VALARM per reminder). ``deserialize`` reads such
a document back into a :class:`CalendarEvent`, returning ``None`` instead of
raising when the document is foreign, truncated or missing UID/DTSTART.

The property writers in this module are shared with the patch merger so that
replaced fields are encoded exactly like freshly created ones.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

from icalendar import vDuration
from pydantic import ValidationError

from aibo.calendar import ical_tree
from aibo.calendar.errors import DocumentParseError, RecurrenceRuleError
from aibo.calendar.ical_tree import Component, Property, build_parameters
from aibo.calendar.ids import new_event_id
from aibo.calendar.models import (
    Attendee,
    AttendeeInfo,
    AttendeeRole,
    CalendarEvent,
    EventSpec,
    EventStatus,
    Instant,
    Organizer,
    Reminder,
    ReminderAction,
    Transparency,
)
from aibo.calendar.recurrence import derive_rule, parse_rule
from aibo.calendar.timefmt import instant_token, parse_instant_token, utc_token

logger = logging.getLogger(__name__)

PRODUCT_ID = "-//Fastmail Aibo//EN"
ICALENDAR_VERSION = "2.0"
INVITATION_METHOD = "REQUEST"
DEFAULT_REMINDER_MINUTES = 15

_ROLE_TO_PARAM: dict[AttendeeRole, str] = {
    AttendeeRole.required: "REQ-PARTICIPANT",
    AttendeeRole.optional: "OPT-PARTICIPANT",
    AttendeeRole.non_participant: "NON-PARTICIPANT",
    AttendeeRole.chair: "CHAIR",
}
_PARAM_TO_ROLE = {param: role for role, param in _ROLE_TO_PARAM.items()}

_ESCAPES = {"\\": "\\\\", ";": "\\;", ",": "\\,", "\n": "\\n"}
_UNESCAPES = {"\\": "\\", ";": ";", ",": ",", ":": ":", "n": "\n", "N": "\n"}
_ESCAPE_PATTERN = re.compile(r"[\\;,\n]")
_UNESCAPE_PATTERN = re.compile(r"\\(.)", re.DOTALL)
_TRIGGER_PATTERN = re.compile(r"^-P(?:T(?P<minutes>\d+)M|T(?P<hours>\d+)H|(?P<days>\d+)D)$")


# ---------------------------------------------------------------------------
# Text escaping
# ---------------------------------------------------------------------------


def escape_text(value: str) -> str:
    """Escape a TEXT value. Carriage returns pass through; only the newline is escaped."""
    return _ESCAPE_PATTERN.sub(lambda m: _ESCAPES[m.group()], value)


def unescape_text(value: str) -> str:
    """Exact inverse of :func:`escape_text`; unknown escapes are left as written."""
    return _UNESCAPE_PATTERN.sub(lambda m: _UNESCAPES.get(m.group(1), m.group()), value)


def split_text_list(value: str) -> list[str]:
    """Split a comma-separated TEXT list on unescaped commas and unescape each item."""
    items: list[str] = []
    start = 0
    index = 0
    while index < len(value):
        char = value[index]
        if char == "\\":
            index += 2
            continue
        if char == ",":
            items.append(value[start:index])
            start = index + 1
        index += 1
    items.append(value[start:])
    return [unescape_text(item) for item in items]


def _strip_mailto(value: str) -> str:
    normalized = value.strip()
    if normalized.lower().startswith("mailto:"):
        return normalized[len("mailto:") :]
    return normalized


# ---------------------------------------------------------------------------
# Property writers (shared with the patch merger)
# ---------------------------------------------------------------------------


def boundary_params(instant: Instant, *, all_day: bool) -> dict[str, str]:
    if all_day or instant.is_date:
        return {"VALUE": "DATE"}
    if instant.tzid is not None:
        return {"TZID": instant.tzid}
    return {}


def set_boundary(event: Component, name: str, instant: Instant, *, all_day: bool) -> Property:
    return event.set(
        name,
        instant_token(instant, date_only=all_day),
        boundary_params(instant, all_day=all_day),
    )


def set_timestamp(event: Component, now: datetime | None = None) -> Property:
    return event.set("DTSTAMP", utc_token(now or datetime.now(UTC)))


def categories_value(categories: Iterable[str]) -> str:
    return ",".join(escape_text(category) for category in categories)


def organizer_property(organizer: Organizer) -> Property:
    params: dict[str, str] = {}
    if organizer.name:
        params["CN"] = organizer.name
    return Property("ORGANIZER", f"mailto:{organizer.email}", build_parameters(params))


def attendee_property(attendee: Attendee) -> Property:
    params: dict[str, str] = {}
    if attendee.name:
        params["CN"] = attendee.name
    params["RSVP"] = "TRUE" if attendee.rsvp_requested else "FALSE"
    params["PARTSTAT"] = "NEEDS-ACTION"
    if attendee.role is not None:
        params["ROLE"] = _ROLE_TO_PARAM[attendee.role]
    return Property("ATTENDEE", f"mailto:{attendee.email}", build_parameters(params))


def trigger_token(reminder: Reminder) -> str:
    """Negative offset before start: minutes, then hours, then days, else 15 minutes."""
    if reminder.minutes_before is not None:
        return f"-PT{reminder.minutes_before}M"
    if reminder.hours_before is not None:
        return f"-PT{reminder.hours_before}H"
    if reminder.days_before is not None:
        return f"-P{reminder.days_before}D"
    return f"-PT{DEFAULT_REMINDER_MINUTES}M"


def alarm_component(reminder: Reminder, *, summary: str) -> Component:
    alarm = Component("VALARM")
    alarm.add("ACTION", reminder.action.value.upper())
    alarm.add("TRIGGER", trigger_token(reminder))
    if reminder.action is ReminderAction.display:
        alarm.add("DESCRIPTION", escape_text(summary))
    return alarm


# ---------------------------------------------------------------------------
# serialize
# ---------------------------------------------------------------------------


def _coerce_spec(spec: EventSpec | Mapping[str, Any]) -> EventSpec:
    return spec if isinstance(spec, EventSpec) else EventSpec.model_validate(spec)


def serialize(
    spec: EventSpec | Mapping[str, Any],
    *,
    uid: str | None = None,
    now: datetime | None = None,
) -> str:
    """Serialize *spec* into a VCALENDAR document with a single VEVENT.

    Args:
        spec: The event to write. Mappings are validated into an EventSpec.
        uid: Identifier to carry over; a new one is generated when omitted.
        now: Timestamp for DTSTAMP; defaults to the current UTC time.
    """
    event_spec = _coerce_spec(spec)

    calendar = Component("VCALENDAR")
    calendar.add("VERSION", ICALENDAR_VERSION)
    calendar.add("PRODID", PRODUCT_ID)
    if event_spec.attendees:
        # Signals an invitation to downstream mail delivery.
        calendar.add("METHOD", INVITATION_METHOD)

    event = Component("VEVENT")
    event.add("UID", uid or new_event_id())
    set_timestamp(event, now)
    event.add("SUMMARY", escape_text(event_spec.summary))

    set_boundary(event, "DTSTART", event_spec.start, all_day=event_spec.all_day)
    if event_spec.end is not None:
        set_boundary(event, "DTEND", event_spec.end, all_day=event_spec.all_day)

    if event_spec.location:
        event.add("LOCATION", escape_text(event_spec.location))
    if event_spec.description:
        event.add("DESCRIPTION", escape_text(event_spec.description))
    if event_spec.status is not None:
        event.add("STATUS", event_spec.status.value.upper())
    if event_spec.url:
        event.add("URL", event_spec.url.strip())
    if event_spec.priority is not None and 1 <= event_spec.priority <= 9:
        event.add("PRIORITY", str(event_spec.priority))
    if event_spec.transparency is not None:
        event.add("TRANSP", event_spec.transparency.value.upper())
    if event_spec.categories:
        event.add("CATEGORIES", categories_value(event_spec.categories))

    if event_spec.organizer is not None:
        event.properties.append(organizer_property(event_spec.organizer))
    for attendee in event_spec.attendees or []:
        event.properties.append(attendee_property(attendee))

    for reminder in event_spec.reminders or []:
        event.add_subcomponent(alarm_component(reminder, summary=event_spec.summary))

    if event_spec.recurrence is not None:
        event.add("RRULE", derive_rule(event_spec.recurrence))

    calendar.add_subcomponent(event)
    return ical_tree.render(calendar)


def serialize_event(
    spec: EventSpec | Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> tuple[str, str]:
    """Serialize a new event, returning ``(document, uid)``."""
    uid = new_event_id()
    return serialize(spec, uid=uid, now=now), uid


# ---------------------------------------------------------------------------
# deserialize
# ---------------------------------------------------------------------------


def read_instant(prop: Property) -> Instant:
    """Read DTSTART/DTEND-style properties. Raises ValueError on bad tokens."""
    value_type = (prop.param("VALUE") or "").upper()
    return parse_instant_token(prop.value, tzid=prop.param("TZID"), is_date=value_type == "DATE")


def _read_text(event: Component, name: str) -> str | None:
    raw = event.value(name)
    if raw is None:
        return None
    return unescape_text(raw) or None


def _read_status(event: Component) -> EventStatus | None:
    raw = event.value("STATUS")
    if raw is None:
        return None
    try:
        return EventStatus(raw.strip().lower())
    except ValueError:
        return None


def _read_transparency(event: Component) -> Transparency | None:
    raw = event.value("TRANSP")
    if raw is None:
        return None
    try:
        return Transparency(raw.strip().lower())
    except ValueError:
        return None


def _read_priority(event: Component) -> int | None:
    raw = event.value("PRIORITY")
    if raw is None:
        return None
    try:
        priority = int(raw.strip())
    except ValueError:
        return None
    return priority if 1 <= priority <= 9 else None


def _read_categories(event: Component) -> list[str] | None:
    categories: list[str] = []
    for prop in event.get_all("CATEGORIES"):
        categories.extend(item for item in split_text_list(prop.value) if item)
    return categories or None


def _read_organizer(event: Component) -> Organizer | None:
    prop = event.get("ORGANIZER")
    if prop is None:
        return None
    email = _strip_mailto(prop.value)
    if not email:
        return None
    return Organizer(email=email, name=prop.param("CN"))


def _read_attendee(prop: Property) -> AttendeeInfo | None:
    email = _strip_mailto(prop.value)
    if not email:
        return None
    partstat = prop.param("PARTSTAT")
    role = _PARAM_TO_ROLE.get((prop.param("ROLE") or "").upper())
    rsvp = (prop.param("RSVP") or "").upper() == "TRUE"
    return AttendeeInfo(
        email=email,
        name=prop.param("CN"),
        rsvp_requested=rsvp,
        role=role,
        participation_status=partstat.lower() if partstat else None,
    )


def _read_attendees(event: Component) -> list[AttendeeInfo] | None:
    attendees = [
        attendee
        for attendee in (_read_attendee(prop) for prop in event.get_all("ATTENDEE"))
        if attendee is not None
    ]
    return attendees or None


def read_trigger_minutes(raw: str) -> int | None:
    """Minutes before start for a relative trigger, or None for unsupported triggers."""
    try:
        offset = vDuration.from_ical(raw.strip())
    except ValueError:
        return None
    if not isinstance(offset, timedelta) or offset > timedelta(0):
        return None
    return int(-offset.total_seconds() // 60)


def _read_reminder(alarm: Component) -> Reminder | None:
    action_raw = (alarm.value("ACTION") or "").strip().lower()
    try:
        action = ReminderAction(action_raw)
    except ValueError:
        return None

    trigger_prop = alarm.get("TRIGGER")
    if trigger_prop is None or (trigger_prop.param("VALUE") or "").upper() == "DATE-TIME":
        return None
    trigger = trigger_prop.value.strip()

    match = _TRIGGER_PATTERN.match(trigger)
    if match is not None:
        if match.group("minutes") is not None:
            return Reminder(minutes_before=int(match.group("minutes")), action=action)
        if match.group("hours") is not None:
            return Reminder(hours_before=int(match.group("hours")), action=action)
        return Reminder(days_before=int(match.group("days")), action=action)

    minutes = read_trigger_minutes(trigger)
    if minutes is None:
        return None
    return Reminder(minutes_before=minutes, action=action)


def _read_reminders(event: Component) -> list[Reminder] | None:
    reminders = [
        reminder
        for reminder in (_read_reminder(alarm) for alarm in event.walk("VALARM"))
        if reminder is not None
    ]
    return reminders or None


def _read_recurrence(event: Component, uid: str):
    raw = event.value("RRULE")
    if raw is None:
        return None
    try:
        return parse_rule(raw)
    except RecurrenceRuleError as exc:
        logger.debug("Ignoring unsupported RRULE on event %s: %s", uid, exc)
        return None


def deserialize(document: str, *, href: str | None = None) -> CalendarEvent | None:
    """Read the first VEVENT of *document*.

    Returns ``None`` when the envelope or event markers are missing, the text
    cannot be parsed, or the event lacks a UID or a usable DTSTART. Optional
    fields that cannot be read are left unset without failing the event.
    """
    upper = document.upper()
    if "BEGIN:VCALENDAR" not in upper or "BEGIN:VEVENT" not in upper:
        return None

    try:
        calendar = ical_tree.parse(document)
    except DocumentParseError as exc:
        logger.debug("Unparseable calendar document (href=%s): %s", href, exc)
        return None

    if calendar.name != "VCALENDAR":
        return None
    event = calendar.first("VEVENT")
    if event is None:
        return None

    uid = unescape_text(event.value("UID") or "").strip()
    if not uid:
        return None

    start_prop = event.get("DTSTART")
    if start_prop is None:
        return None
    try:
        start = read_instant(start_prop)
    except ValueError as exc:
        logger.debug("Event %s has an unreadable DTSTART: %s", uid, exc)
        return None

    end: Instant | None = None
    end_prop = event.get("DTEND")
    if end_prop is not None:
        try:
            end = read_instant(end_prop)
        except ValueError as exc:
            logger.debug("Event %s has an unreadable DTEND: %s", uid, exc)

    url = (event.value("URL") or "").strip()
    try:
        return CalendarEvent(
            uid=uid,
            href=href,
            summary=unescape_text(event.value("SUMMARY") or ""),
            start=start,
            end=end,
            all_day=start.is_date,
            location=_read_text(event, "LOCATION"),
            description=_read_text(event, "DESCRIPTION"),
            recurrence=_read_recurrence(event, uid),
            attendees=_read_attendees(event),
            organizer=_read_organizer(event),
            status=_read_status(event),
            url=url or None,
            categories=_read_categories(event),
            priority=_read_priority(event),
            transparency=_read_transparency(event),
            reminders=_read_reminders(event),
        )
    except ValidationError as exc:
        logger.debug("Event %s does not fit the event model: %s", uid, exc)
        return None
