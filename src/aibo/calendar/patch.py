"""Sparse patch merger for stored event documents.

The merger edits the parsed document rather than re-serializing a typed
event: properties the patch does not name keep their original line, and
replaced properties keep their position. DTSTAMP is the one property that
is always rewritten.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime, time
from typing import Any

from aibo.calendar import ical_tree
from aibo.calendar.codec import (
    INVITATION_METHOD,
    alarm_component,
    attendee_property,
    categories_value,
    escape_text,
    organizer_property,
    read_instant,
    set_boundary,
    set_timestamp,
    unescape_text,
)
from aibo.calendar.errors import DocumentParseError, EventDocumentError
from aibo.calendar.ical_tree import Component, Property
from aibo.calendar.models import EventPatch, Instant
from aibo.calendar.recurrence import derive_rule

logger = logging.getLogger(__name__)

# patch field -> VEVENT property for plain TEXT fields
_TEXT_FIELDS = {
    "location": "LOCATION",
    "description": "DESCRIPTION",
}
# patch field -> VEVENT property for enum fields written upper-case
_ENUM_FIELDS = {
    "status": "STATUS",
    "transparency": "TRANSP",
}


def _open_event(document: str) -> tuple[Component, Component]:
    try:
        calendar = ical_tree.parse(document)
    except DocumentParseError as exc:
        raise EventDocumentError(f"Cannot patch unreadable calendar document: {exc}") from exc
    if calendar.name != "VCALENDAR":
        raise EventDocumentError(f"Cannot patch a {calendar.name} document; expected VCALENDAR")
    event = calendar.first("VEVENT")
    if event is None:
        raise EventDocumentError("Cannot patch a calendar document without a VEVENT")
    return calendar, event


def _replace_all(component: Component, name: str, replacements: list[Property]) -> None:
    """Swap every *name* property for *replacements*, keeping the first one's position."""
    upper = name.upper()
    position = next(
        (index for index, prop in enumerate(component.properties) if prop.name == upper),
        None,
    )
    component.remove(upper)
    if position is None:
        component.properties.extend(replacements)
    else:
        component.properties[position:position] = replacements


def _is_date_property(prop: Property | None) -> bool:
    return prop is not None and (prop.param("VALUE") or "").upper() == "DATE"


def _regranulate(event: Component, name: str, *, all_day: bool) -> None:
    """Flip an existing boundary between DATE and DATE-TIME without moving it."""
    prop = event.get(name)
    if prop is None:
        return
    try:
        current = read_instant(prop)
    except ValueError as exc:
        raise EventDocumentError(f"Event has an unreadable {name}: {exc}") from exc
    if current.is_date == all_day:
        return
    if all_day:
        set_boundary(event, name, Instant(value=current.as_date()), all_day=True)
    else:
        midnight = datetime.combine(current.as_date(), time(), tzinfo=UTC)
        set_boundary(event, name, Instant(value=midnight), all_day=False)


def _patch_boundaries(event: Component, patch: EventPatch) -> None:
    all_day = patch.all_day
    if all_day is None:
        all_day = _is_date_property(event.get("DTSTART"))

    if patch.start is not None:
        set_boundary(event, "DTSTART", patch.start, all_day=all_day)
    elif patch.touches("all_day"):
        _regranulate(event, "DTSTART", all_day=all_day)

    if patch.touches("end"):
        if patch.end is None:
            event.remove("DTEND")
        else:
            set_boundary(event, "DTEND", patch.end, all_day=all_day)
    elif patch.touches("all_day"):
        _regranulate(event, "DTEND", all_day=all_day)


def _patch_attendees(calendar: Component, event: Component, patch: EventPatch) -> None:
    if not patch.attendees:
        event.remove("ATTENDEE")
        calendar.remove("METHOD")
        return
    _replace_all(event, "ATTENDEE", [attendee_property(attendee) for attendee in patch.attendees])
    calendar.set("METHOD", INVITATION_METHOD)


def _patch_reminders(event: Component, patch: EventPatch) -> None:
    event.remove_subcomponents("VALARM")
    summary = unescape_text(event.value("SUMMARY") or "")
    for reminder in patch.reminders or []:
        event.add_subcomponent(alarm_component(reminder, summary=summary))


def _coerce_patch(patch: EventPatch | Mapping[str, Any]) -> EventPatch:
    return patch if isinstance(patch, EventPatch) else EventPatch.model_validate(patch)


def apply_patch(
    document: str,
    patch: EventPatch | Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> str:
    """Apply a sparse *patch* to a stored event document.

    Fields absent from the patch are left exactly as written. ``""`` clears
    a text or enum field, ``[]`` clears categories/attendees/reminders and
    ``None`` clears priority, organizer, end and recurrence.

    Raises:
        EventDocumentError: if *document* is not a VCALENDAR holding a VEVENT.
    """
    event_patch = _coerce_patch(patch)
    calendar, event = _open_event(document)

    set_timestamp(event, now)

    if event_patch.summary is not None:
        event.set("SUMMARY", escape_text(event_patch.summary.strip()))

    _patch_boundaries(event, event_patch)

    for field_name, prop_name in _TEXT_FIELDS.items():
        if not event_patch.touches(field_name):
            continue
        text = getattr(event_patch, field_name)
        if text:
            event.set(prop_name, escape_text(text))
        else:
            event.remove(prop_name)

    for field_name, prop_name in _ENUM_FIELDS.items():
        if not event_patch.touches(field_name):
            continue
        member = getattr(event_patch, field_name)
        if member:
            event.set(prop_name, member.value.upper())
        else:
            event.remove(prop_name)

    if event_patch.touches("url"):
        url = (event_patch.url or "").strip()
        if url:
            event.set("URL", url)
        else:
            event.remove("URL")

    if event_patch.touches("categories"):
        if event_patch.categories:
            event.set("CATEGORIES", categories_value(event_patch.categories))
        else:
            event.remove("CATEGORIES")

    if event_patch.touches("priority"):
        if event_patch.priority is None:
            event.remove("PRIORITY")
        else:
            event.set("PRIORITY", str(event_patch.priority))

    if event_patch.touches("organizer"):
        if event_patch.organizer is None:
            event.remove("ORGANIZER")
        else:
            _replace_all(event, "ORGANIZER", [organizer_property(event_patch.organizer)])

    if event_patch.touches("attendees"):
        _patch_attendees(calendar, event, event_patch)

    if event_patch.touches("reminders"):
        _patch_reminders(event, event_patch)

    if event_patch.touches("recurrence"):
        if event_patch.recurrence is None:
            event.remove("RRULE")
        else:
            event.set("RRULE", derive_rule(event_patch.recurrence))

    logger.debug(
        "Patched event %s (fields=%s)",
        event.value("UID"),
        sorted(event_patch.model_fields_set),
    )
    return ical_tree.render(calendar)
