"""Shared fixtures for the aibo test suite."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

FIXED_NOW = datetime(2024, 12, 1, 9, 0, 0, tzinfo=UTC)
LATER_NOW = datetime(2024, 12, 2, 15, 30, 0, tzinfo=UTC)


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def later_now() -> datetime:
    return LATER_NOW
