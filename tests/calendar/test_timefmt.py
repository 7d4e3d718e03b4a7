"""Unit tests for DATE / DATE-TIME token helpers."""

from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from aibo.calendar.models import Instant
from aibo.calendar.timefmt import instant_token, parse_instant_token

pytestmark = pytest.mark.unit


class TestInstantToken:
    @pytest.mark.parametrize(
        ("instant", "date_only", "expected"),
        [
            (Instant(value="2025-12-25"), False, "20251225"),
            (Instant(value="2025-12-15T10:00:00+02:00"), False, "20251215T080000Z"),
            (Instant(value="2025-12-15T10:00:00", tzid="Europe/Berlin"), False, "20251215T100000"),
            (Instant(value="2025-12-15T23:30:00Z"), True, "20251215"),
            (Instant(value="2025-12-15T23:30:00", tzid="America/New_York"), True, "20251215"),
        ],
    )
    def test_tokens(self, instant: Instant, date_only: bool, expected: str):
        assert instant_token(instant, date_only=date_only) == expected


class TestParseInstantToken:
    def test_date(self):
        assert parse_instant_token("20251225") == Instant(value=date(2025, 12, 25))

    def test_utc_datetime(self):
        instant = parse_instant_token("20251215T100000Z")
        assert instant.value == datetime(2025, 12, 15, 10, 0, tzinfo=UTC)
        assert instant.tzid is None

    def test_floating_datetime_is_read_as_utc(self):
        assert parse_instant_token("20251215T100000").value == datetime(
            2025, 12, 15, 10, 0, tzinfo=UTC
        )

    def test_named_zone_keeps_wall_time(self):
        instant = parse_instant_token("20251215T100000", tzid="Europe/Berlin")
        assert instant.value == datetime(2025, 12, 15, 10, 0)
        assert instant.tzid == "Europe/Berlin"

    def test_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_instant_token("tomorrow")
