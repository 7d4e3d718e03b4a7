"""Date and date-time token helpers built on icalendar's value types."""

from __future__ import annotations

from datetime import UTC, date, datetime

from icalendar import vDate, vDatetime

from aibo.calendar.models import Instant


def _decode(token: bytes | str) -> str:
    return token.decode("ascii") if isinstance(token, bytes) else token


def date_token(value: date) -> str:
    """``2025-12-25`` -> ``20251225``."""
    if isinstance(value, datetime):
        value = value.date()
    return _decode(vDate(value).to_ical())


def wall_token(value: datetime) -> str:
    """Local wall time without a zone marker: ``20241204T100000``."""
    return _decode(vDatetime(value.replace(tzinfo=None)).to_ical())


def utc_token(value: datetime) -> str:
    """Compact UTC form: ``20251215T100000Z``."""
    if value.tzinfo is not None:
        value = value.astimezone(UTC)
    return f"{wall_token(value)}Z"


def instant_token(instant: Instant, *, date_only: bool = False) -> str:
    """Token for *instant*; ``date_only`` truncates date-times to their date."""
    value = instant.value
    if date_only or not isinstance(value, datetime):
        return date_token(instant.as_date())
    if instant.tzid is not None:
        return wall_token(value)
    return utc_token(value)


def parse_instant_token(token: str, *, tzid: str | None = None, is_date: bool = False) -> Instant:
    """Parse a DATE or DATE-TIME token back into an :class:`Instant`.

    Floating date-times (no ``Z`` and no TZID) are read as UTC.

    Raises:
        ValueError: if the token is not a valid iCalendar date or date-time.
    """
    normalized = token.strip()
    if is_date or (len(normalized) == 8 and normalized.isdigit()):
        return Instant(value=vDate.from_ical(normalized))
    parsed = vDatetime.from_ical(normalized)
    if tzid is not None:
        return Instant(value=parsed.replace(tzinfo=None), tzid=tzid)
    return Instant(value=parsed)
