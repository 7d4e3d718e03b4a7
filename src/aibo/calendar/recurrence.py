"""Recurrence rule derivation, parsing and human-readable summaries."""

from __future__ import annotations

from datetime import date, datetime

from icalendar import vRecur

from aibo.calendar.errors import RecurrenceRuleError
from aibo.calendar.models import Frequency, Instant, RecurrenceSpec, Weekday
from aibo.calendar.timefmt import date_token, utc_token

WEEKDAY_NAMES: dict[Weekday, str] = {
    Weekday.MO: "Monday",
    Weekday.TU: "Tuesday",
    Weekday.WE: "Wednesday",
    Weekday.TH: "Thursday",
    Weekday.FR: "Friday",
    Weekday.SA: "Saturday",
    Weekday.SU: "Sunday",
}


def _until_token(until: Instant) -> str:
    value = until.value
    if isinstance(value, datetime):
        return utc_token(value)
    return date_token(value)


def derive_rule(spec: RecurrenceSpec) -> str:
    """Build the RRULE value for *spec* (without the ``RRULE:`` prefix).

    Token order is FREQ, INTERVAL, BYDAY, COUNT, UNTIL. INTERVAL is only
    written when greater than 1. When both COUNT and UNTIL are supplied,
    only UNTIL is written.
    """
    parts = [f"FREQ={spec.frequency.value.upper()}"]
    if spec.interval is not None and spec.interval > 1:
        parts.append(f"INTERVAL={spec.interval}")
    if spec.by_day:
        parts.append(f"BYDAY={','.join(day.value for day in spec.by_day)}")
    if spec.count is not None and spec.until is None:
        parts.append(f"COUNT={spec.count}")
    if spec.until is not None:
        parts.append(f"UNTIL={_until_token(spec.until)}")
    return ";".join(parts)


def describe_rule(spec: RecurrenceSpec) -> str:
    """Summarize *spec* for humans, e.g. ``"every 2 weeks on Monday, Friday (10 times)"``."""
    parts: list[str] = []
    if spec.interval is None or spec.interval == 1:
        parts.append(spec.frequency.value)
    else:
        # The unit is the frequency minus "ly", so daily reads "every 3 dais".
        unit = spec.frequency.value.removesuffix("ly")
        parts.append(f"every {spec.interval} {unit}s")

    if spec.by_day:
        parts.append("on " + ", ".join(WEEKDAY_NAMES[day] for day in spec.by_day))

    if spec.count is not None:
        parts.append(f"({spec.count} times)")
    elif spec.until is not None:
        parts.append(f"until {spec.until.as_date().isoformat()}")

    return " ".join(parts)


def _single(recur: vRecur, key: str) -> object | None:
    values = recur.get(key)
    if not values:
        return None
    return values[0]


def parse_rule(text: str) -> RecurrenceSpec:
    """Parse an RRULE value back into a :class:`RecurrenceSpec`.

    Tokens that are absent stay unset. ``INTERVAL=1`` is treated as unset so
    that it matches what :func:`derive_rule` writes.

    Raises:
        RecurrenceRuleError: if FREQ is missing or unsupported, or a part is malformed.
    """
    normalized = text.strip()
    if normalized.upper().startswith("RRULE:"):
        normalized = normalized[len("RRULE:") :]
    if not normalized:
        raise RecurrenceRuleError("recurrence rule is empty")

    try:
        recur = vRecur.from_ical(normalized)
    except ValueError as exc:
        raise RecurrenceRuleError(f"Malformed recurrence rule {normalized!r}: {exc}") from exc

    freq = _single(recur, "FREQ")
    if freq is None:
        raise RecurrenceRuleError(f"recurrence rule {normalized!r} has no FREQ")
    try:
        frequency = Frequency(str(freq).lower())
    except ValueError as exc:
        raise RecurrenceRuleError(f"Unsupported recurrence frequency: {freq}") from exc

    interval = _single(recur, "INTERVAL")
    count = _single(recur, "COUNT")
    until_raw = _single(recur, "UNTIL")
    by_day_raw = recur.get("BYDAY") or []

    try:
        by_day = [Weekday(str(day).upper()) for day in by_day_raw]
    except ValueError as exc:
        raise RecurrenceRuleError(f"Unsupported BYDAY value in {normalized!r}") from exc

    until: Instant | None = None
    if isinstance(until_raw, date):
        until = Instant(value=until_raw)

    try:
        return RecurrenceSpec(
            frequency=frequency,
            interval=int(interval) if interval is not None and int(interval) > 1 else None,
            count=int(count) if count is not None else None,
            until=until,
            by_day=by_day or None,
        )
    except ValueError as exc:
        raise RecurrenceRuleError(f"Invalid recurrence rule {normalized!r}: {exc}") from exc
