"""Event identifiers and the resource filenames derived from them."""

from __future__ import annotations

import time
import uuid

UID_DOMAIN = "fastmail-aibo"
RESOURCE_SUFFIX = ".ics"


def new_event_id() -> str:
    """Return a new globally unique event UID.

    Format: ``<epoch-millis>-<8 hex chars>@fastmail-aibo``.
    """
    return f"{time.time_ns() // 1_000_000}-{uuid.uuid4().hex[:8]}@{UID_DOMAIN}"


def filename_for(uid: str) -> str:
    """Resource name under which the event with *uid* is stored."""
    return f"{uid}{RESOURCE_SUFFIX}"
