"""Calendar event codec, patch merger and CalDAV transport."""

from aibo.calendar.caldav import CalDAVClient, CalendarCache, StoredEvent
from aibo.calendar.codec import (
    deserialize,
    escape_text,
    serialize,
    serialize_event,
    unescape_text,
)
from aibo.calendar.errors import (
    CalDAVConflictError,
    CalDAVError,
    CalDAVRequestError,
    CalendarError,
    CalendarNotFoundError,
    DocumentParseError,
    EventDocumentError,
    RecurrenceRuleError,
)
from aibo.calendar.formatting import format_calendars_csv, format_events_csv
from aibo.calendar.ids import filename_for, new_event_id
from aibo.calendar.models import (
    Attendee,
    AttendeeInfo,
    AttendeeRole,
    CalendarEvent,
    CalendarInfo,
    EventPatch,
    EventSpec,
    EventStatus,
    Frequency,
    Instant,
    Organizer,
    RecurrenceSpec,
    Reminder,
    ReminderAction,
    Transparency,
    Weekday,
)
from aibo.calendar.patch import apply_patch
from aibo.calendar.recurrence import derive_rule, describe_rule, parse_rule

__all__ = [
    "Attendee",
    "AttendeeInfo",
    "AttendeeRole",
    "CalDAVClient",
    "CalDAVConflictError",
    "CalDAVError",
    "CalDAVRequestError",
    "CalendarCache",
    "CalendarError",
    "CalendarEvent",
    "CalendarInfo",
    "CalendarNotFoundError",
    "DocumentParseError",
    "EventDocumentError",
    "EventPatch",
    "EventSpec",
    "EventStatus",
    "Frequency",
    "Instant",
    "Organizer",
    "RecurrenceRuleError",
    "RecurrenceSpec",
    "Reminder",
    "ReminderAction",
    "StoredEvent",
    "Transparency",
    "Weekday",
    "apply_patch",
    "derive_rule",
    "describe_rule",
    "deserialize",
    "escape_text",
    "filename_for",
    "format_calendars_csv",
    "format_events_csv",
    "new_event_id",
    "parse_rule",
    "serialize",
    "serialize_event",
    "unescape_text",
]
