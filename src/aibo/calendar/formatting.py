"""CSV views over calendars and events."""

from __future__ import annotations

from collections.abc import Iterable

from aibo.calendar.models import CalendarEvent, CalendarInfo, Instant
from aibo.core.tabular import render_csv

CALENDAR_COLUMNS = ("url", "display_name", "ctag", "color", "description")
EVENT_COLUMNS = ("uid", "url", "summary", "start", "end", "location", "description", "all_day")


def _instant(value: Instant | None) -> str:
    return value.isoformat() if value is not None else ""


def format_calendars_csv(calendars: Iterable[CalendarInfo]) -> str:
    return render_csv(
        CALENDAR_COLUMNS,
        (
            (
                calendar.url,
                calendar.display_name,
                calendar.ctag,
                calendar.color,
                calendar.description,
            )
            for calendar in calendars
        ),
    )


def format_events_csv(events: Iterable[CalendarEvent]) -> str:
    """One row per event; ``url`` is the stored resource href when known."""
    return render_csv(
        EVENT_COLUMNS,
        (
            (
                event.uid,
                event.href,
                event.summary,
                _instant(event.start),
                _instant(event.end),
                event.location,
                event.description,
                "true" if event.all_day else "false",
            )
            for event in events
        ),
    )
