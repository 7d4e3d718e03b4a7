"""Error hierarchy for the calendar codec and CalDAV transport."""

from __future__ import annotations


class CalendarError(RuntimeError):
    """Base error raised by calendar document and transport helpers."""


class EventDocumentError(CalendarError):
    """Raised when a stored document cannot be opened as a VCALENDAR/VEVENT pair."""


class DocumentParseError(ValueError):
    """Raised by the structured-text adapter when text is not a well-formed component."""


class RecurrenceRuleError(ValueError):
    """Raised when an RRULE value is missing FREQ or carries malformed parts."""


class CalDAVError(CalendarError):
    """Raised when a CalDAV request cannot be completed."""


class CalDAVRequestError(CalDAVError):
    """Raised when the CalDAV server answers with a non-success status."""

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"CalDAV request failed ({status_code}): {message}")


class CalDAVConflictError(CalDAVRequestError):
    """Raised when a conditional write is rejected because the stored ETag moved."""


class CalendarNotFoundError(CalDAVError):
    """Raised when a calendar name or URL matches no collection on the server."""
