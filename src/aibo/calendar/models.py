"""Calendar event record model.

``EventSpec`` is the creation input and the authoritative shape for round
trips, ``CalendarEvent`` is what the codec hands back after reading a stored
document, and ``EventPatch`` is the sparse update payload consumed by the
patch merger.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Frequency(StrEnum):
    """Supported RRULE frequencies."""

    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class Weekday(StrEnum):
    MO = "MO"
    TU = "TU"
    WE = "WE"
    TH = "TH"
    FR = "FR"
    SA = "SA"
    SU = "SU"


class EventStatus(StrEnum):
    """Event lifecycle states carried in STATUS."""

    confirmed = "confirmed"
    tentative = "tentative"
    cancelled = "cancelled"


class Transparency(StrEnum):
    """Busy (opaque) vs. free (transparent) time, carried in TRANSP."""

    opaque = "opaque"
    transparent = "transparent"


class AttendeeRole(StrEnum):
    required = "required"
    optional = "optional"
    non_participant = "non-participant"
    chair = "chair"


class ReminderAction(StrEnum):
    display = "display"
    email = "email"


def _parse_iso_instant(raw: str) -> date | datetime:
    normalized = raw.strip()
    if not normalized:
        raise ValueError("instant must be a non-empty ISO-8601 string")
    if "T" in normalized or " " in normalized:
        return datetime.fromisoformat(normalized)
    return date.fromisoformat(normalized)


class Instant(BaseModel):
    """A point in time: a calendar date, a UTC date-time, or a named-zone wall time.

    Named-zone values are stored as naive wall-clock times next to their TZID;
    no timezone database lookup or conversion ever happens here.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    value: datetime | date
    tzid: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _coerce_input(cls, data: Any) -> Any:
        if isinstance(data, str | date):
            data = {"value": data}
        if not isinstance(data, Mapping):
            return data

        value = data.get("value")
        if isinstance(value, str):
            value = _parse_iso_instant(value)
        tzid = data.get("tzid")
        if isinstance(tzid, str):
            tzid = tzid.strip() or None

        if isinstance(value, datetime):
            if tzid is not None:
                value = value.replace(tzinfo=None)
            elif value.tzinfo is None or value.utcoffset() is None:
                value = value.replace(tzinfo=UTC)
            else:
                value = value.astimezone(UTC)
        return {**data, "value": value, "tzid": tzid}

    @model_validator(mode="after")
    def _validate_date_has_no_zone(self) -> Instant:
        if self.is_date and self.tzid is not None:
            raise ValueError("date-only instants cannot carry a tzid")
        return self

    @property
    def is_date(self) -> bool:
        return not isinstance(self.value, datetime)

    def as_date(self) -> date:
        value = self.value
        return value.date() if isinstance(value, datetime) else value

    def isoformat(self) -> str:
        value = self.value
        if not isinstance(value, datetime):
            return value.isoformat()
        if self.tzid is not None:
            return f"{value.isoformat()}[{self.tzid}]"
        return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def _coerce_instant(value: Any) -> Any:
    if value is None or isinstance(value, Instant):
        return value
    return Instant.model_validate(value)


class RecurrenceSpec(BaseModel):
    """Repeat pattern for an event, serialized as a single RRULE."""

    model_config = ConfigDict(extra="forbid")

    frequency: Frequency
    interval: int | None = Field(default=None, ge=1)
    count: int | None = Field(default=None, ge=1)
    until: Instant | None = None
    by_day: list[Weekday] | None = None

    @field_validator("frequency", mode="before")
    @classmethod
    def _lower_frequency(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("until", mode="before")
    @classmethod
    def _coerce_until(cls, value: Any) -> Any:
        return _coerce_instant(value)

    @field_validator("until")
    @classmethod
    def _reject_named_zone_until(cls, value: Instant | None) -> Instant | None:
        if value is not None and value.tzid is not None:
            raise ValueError("until must be a date or a UTC date-time")
        return value

    @field_validator("by_day", mode="before")
    @classmethod
    def _upper_weekdays(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [day.strip().upper() if isinstance(day, str) else day for day in value]
        return value


class Attendee(BaseModel):
    """An invited participant, written as one ATTENDEE line.

    Creators cannot choose a participation status; new invitations always
    carry NEEDS-ACTION.
    """

    model_config = ConfigDict(extra="forbid")

    email: str = Field(min_length=1)
    name: str | None = None
    rsvp_requested: bool = True
    role: AttendeeRole | None = None

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("email must be a non-empty string")
        return normalized


class AttendeeInfo(Attendee):
    """An attendee read back from a stored event."""

    participation_status: str | None = None


class Organizer(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str = Field(min_length=1)
    name: str | None = None


class Reminder(BaseModel):
    """One VALARM. Only the first of minutes/hours/days that is set is honored."""

    model_config = ConfigDict(extra="forbid")

    minutes_before: int | None = Field(default=None, ge=0)
    hours_before: int | None = Field(default=None, ge=0)
    days_before: int | None = Field(default=None, ge=0)
    action: ReminderAction = ReminderAction.display


class _EventFields(BaseModel):
    model_config = ConfigDict(extra="forbid")

    summary: str
    start: Instant
    end: Instant | None = None
    all_day: bool = False
    location: str | None = None
    description: str | None = None
    recurrence: RecurrenceSpec | None = None
    attendees: list[Attendee] | None = None
    organizer: Organizer | None = None
    status: EventStatus | None = None
    url: str | None = None
    categories: list[str] | None = None
    priority: int | None = None
    transparency: Transparency | None = None
    reminders: list[Reminder] | None = None

    @field_validator("start", "end", mode="before")
    @classmethod
    def _coerce_boundaries(cls, value: Any) -> Any:
        return _coerce_instant(value)

    @field_validator("status", "transparency", mode="before")
    @classmethod
    def _lower_enums(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


class EventSpec(_EventFields):
    """Complete description of an event to be created."""

    @field_validator("summary")
    @classmethod
    def _require_summary(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("summary must be a non-empty string")
        return normalized


class CalendarEvent(_EventFields):
    """An event read back from a stored document."""

    uid: str
    href: str | None = None
    attendees: list[AttendeeInfo] | None = None

    @property
    def recurrence_description(self) -> str | None:
        from aibo.calendar.recurrence import describe_rule

        if self.recurrence is None:
            return None
        return describe_rule(self.recurrence)


class EventPatch(BaseModel):
    """Sparse update payload.

    Presence is tracked through ``model_fields_set``: a field that was never
    supplied is left untouched, ``""`` clears a text or enum field, ``[]``
    clears a list field and ``None`` clears ``priority``, ``organizer``,
    ``end`` and ``recurrence``.
    """

    model_config = ConfigDict(extra="forbid")

    summary: str | None = None
    start: Instant | None = None
    end: Instant | None = None
    all_day: bool | None = None
    location: str | None = None
    description: str | None = None
    status: EventStatus | Literal[""] | None = None
    url: str | None = None
    transparency: Transparency | Literal[""] | None = None
    categories: list[str] | None = None
    attendees: list[Attendee] | None = None
    reminders: list[Reminder] | None = None
    priority: int | None = Field(default=None, ge=1, le=9)
    organizer: Organizer | None = None
    recurrence: RecurrenceSpec | None = None

    @field_validator("start", "end", mode="before")
    @classmethod
    def _coerce_boundaries(cls, value: Any) -> Any:
        return _coerce_instant(value)

    @field_validator("status", "transparency", mode="before")
    @classmethod
    def _lower_enums(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _reject_null_required_fields(self) -> EventPatch:
        for name in ("summary", "start", "all_day"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be cleared")
        if "summary" in self.model_fields_set and not (self.summary or "").strip():
            raise ValueError("summary must be a non-empty string")
        return self

    def touches(self, name: str) -> bool:
        return name in self.model_fields_set


class CalendarInfo(BaseModel):
    """A calendar collection discovered on the CalDAV server."""

    model_config = ConfigDict(extra="forbid")

    url: str
    display_name: str | None = None
    ctag: str | None = None
    color: str | None = None
    description: str | None = None
