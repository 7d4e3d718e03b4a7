"""CalDAV transport for Fastmail calendars.

The client discovers calendar collections, queries and stores single-event
documents, and delegates every document transformation to the codec and
patch merger. Conditional writes use ETags: creates send
``If-None-Match: *`` and updates send ``If-Match`` with the ETag read just
before the patch was applied.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, date, datetime, time
from typing import Any
from urllib.parse import quote

import httpx

from aibo.calendar.codec import deserialize, serialize_event
from aibo.calendar.errors import (
    CalDAVConflictError,
    CalDAVError,
    CalDAVRequestError,
    CalendarNotFoundError,
)
from aibo.calendar.ids import filename_for
from aibo.calendar.models import CalendarEvent, CalendarInfo, EventPatch, EventSpec
from aibo.calendar.patch import apply_patch
from aibo.calendar.timefmt import utc_token
from aibo.config import DEFAULT_CALDAV_URL, AiboConfig
from aibo.dav import (
    APPLE_ICAL_NS,
    CALDAV_NS,
    CALENDARSERVER_NS,
    DAV_NS,
    DEFAULT_TIMEOUT_S,
    DAVTransport,
    qname,
)

logger = logging.getLogger(__name__)

DEFAULT_EVENT_LIMIT = 50
ICALENDAR_CONTENT_TYPE = "text/calendar; charset=utf-8"

# Open-ended ranges are closed with these bounds when only one side is given.
_RANGE_FLOOR = datetime(1970, 1, 1, tzinfo=UTC)
_RANGE_CEILING = datetime(2100, 1, 1, tzinfo=UTC)

_CALENDAR_PROPFIND = (
    '<?xml version="1.0" encoding="utf-8"?>'
    f'<d:propfind xmlns:d="{DAV_NS}" xmlns:c="{CALDAV_NS}" '
    f'xmlns:cs="{CALENDARSERVER_NS}" xmlns:ic="{APPLE_ICAL_NS}">'
    "<d:prop><d:resourcetype/><d:displayname/><cs:getctag/>"
    "<ic:calendar-color/><c:calendar-description/></d:prop>"
    "</d:propfind>"
)


def _calendar_query(start: datetime | None, end: datetime | None) -> str:
    time_range = ""
    if start is not None or end is not None:
        time_range = (
            f'<c:time-range start="{utc_token(start or _RANGE_FLOOR)}" '
            f'end="{utc_token(end or _RANGE_CEILING)}"/>'
        )
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        f'<c:calendar-query xmlns:d="{DAV_NS}" xmlns:c="{CALDAV_NS}">'
        "<d:prop><d:getetag/><c:calendar-data/></d:prop>"
        '<c:filter><c:comp-filter name="VCALENDAR">'
        f'<c:comp-filter name="VEVENT">{time_range}</c:comp-filter>'
        "</c:comp-filter></c:filter>"
        "</c:calendar-query>"
    )


def _start_sort_key(event: CalendarEvent) -> datetime:
    value = event.start.value
    if not isinstance(value, datetime):
        return datetime.combine(value, time(), tzinfo=UTC)
    if value.tzinfo is None:
        # Named-zone wall time; ordered as if it were UTC.
        return value.replace(tzinfo=UTC)
    return value


def _as_utc(value: datetime | date | None) -> datetime | None:
    if value is None:
        return None
    if not isinstance(value, datetime):
        return datetime.combine(value, time(), tzinfo=UTC)
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class CalendarCache:
    """Calendar listing cached per client; ``invalidate`` forces the next PROPFIND."""

    def __init__(self) -> None:
        self._calendars: list[CalendarInfo] | None = None

    def get(self) -> list[CalendarInfo] | None:
        return list(self._calendars) if self._calendars is not None else None

    def store(self, calendars: list[CalendarInfo]) -> None:
        self._calendars = list(calendars)

    def invalidate(self) -> None:
        self._calendars = None


@dataclass(frozen=True)
class StoredEvent:
    """A fetched event resource: raw document, ETag and parsed event (if readable)."""

    href: str
    document: str
    etag: str | None
    event: CalendarEvent | None


class CalDAVClient(DAVTransport):
    """Async CalDAV client over ``httpx.AsyncClient`` with Basic auth."""

    service_name = "CalDAV"
    error_cls = CalDAVError
    request_error_cls = CalDAVRequestError
    conflict_error_cls = CalDAVConflictError

    def __init__(
        self,
        *,
        username: str,
        password: str,
        base_url: str | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        http_client: httpx.AsyncClient | None = None,
        cache: CalendarCache | None = None,
    ) -> None:
        super().__init__(
            base_url=base_url or DEFAULT_CALDAV_URL.format(username=username),
            username=username,
            password=password,
            timeout_s=timeout_s,
            http_client=http_client,
        )
        self.cache = cache or CalendarCache()

    @classmethod
    def from_config(
        cls,
        config: AiboConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> CalDAVClient:
        return cls(
            username=config.username,
            password=config.password,
            base_url=config.caldav_url,
            timeout_s=config.caldav.timeout_s,
            http_client=http_client,
        )

    # -- calendars -----------------------------------------------------------

    async def list_calendars(self, *, refresh: bool = False) -> list[CalendarInfo]:
        """Calendar collections under the user's home, served from cache when possible."""
        if refresh:
            self.cache.invalidate()
        cached = self.cache.get()
        if cached is not None:
            return cached

        resources = await self.multistatus("PROPFIND", self.base_url, _CALENDAR_PROPFIND)
        calendars = [
            CalendarInfo(
                url=resource.href,
                display_name=resource.text(qname(DAV_NS, "displayname")) or "Unnamed",
                ctag=resource.text(qname(CALENDARSERVER_NS, "getctag")),
                color=resource.text(qname(APPLE_ICAL_NS, "calendar-color")),
                description=resource.text(qname(CALDAV_NS, "calendar-description")),
            )
            for resource in resources
            if resource.has_resource_type(qname(CALDAV_NS, "calendar"))
        ]
        logger.debug("Discovered %d calendars for %s", len(calendars), self.username)
        self.cache.store(calendars)
        return self.cache.get() or []

    def invalidate_calendars(self) -> None:
        self.cache.invalidate()

    async def resolve_calendar(self, name_or_url: str) -> CalendarInfo | None:
        """Match by exact href or absolute URL first, then by case-insensitive display name."""
        needle = name_or_url.strip()
        if not needle:
            return None
        calendars = await self.list_calendars()
        for calendar in calendars:
            if needle in (calendar.url, self.url_for(calendar.url)):
                return calendar
        folded = needle.casefold()
        for calendar in calendars:
            if calendar.display_name and calendar.display_name.casefold() == folded:
                return calendar
        return None

    async def _require_calendar(self, calendar: CalendarInfo | str) -> CalendarInfo:
        if isinstance(calendar, CalendarInfo):
            return calendar
        resolved = await self.resolve_calendar(calendar)
        if resolved is None:
            raise CalendarNotFoundError(
                f'Calendar not found: "{calendar}". List calendars to see available names.'
            )
        return resolved

    def _event_url(self, calendar: CalendarInfo, uid: str) -> str:
        calendar_url = self.url_for(calendar.url)
        if not calendar_url.endswith("/"):
            calendar_url = f"{calendar_url}/"
        return f"{calendar_url}{quote(filename_for(uid), safe='@')}"

    # -- events --------------------------------------------------------------

    async def list_events(
        self,
        calendar: CalendarInfo | str | None = None,
        *,
        start: datetime | date | None = None,
        end: datetime | date | None = None,
        limit: int = DEFAULT_EVENT_LIMIT,
    ) -> list[CalendarEvent]:
        """Events from one calendar (or every calendar when omitted), earliest first.

        Documents that cannot be read as events are skipped.
        """
        if limit < 1:
            raise ValueError("limit must be at least 1")

        if calendar is None:
            targets = await self.list_calendars()
        else:
            targets = [await self._require_calendar(calendar)]

        body = _calendar_query(_as_utc(start), _as_utc(end))
        events: list[CalendarEvent] = []
        for target in targets:
            resources = await self.multistatus("REPORT", self.url_for(target.url), body)
            for resource in resources:
                document = resource.text(qname(CALDAV_NS, "calendar-data"))
                if document is None:
                    continue
                event = deserialize(document, href=resource.href)
                if event is None:
                    logger.debug("Skipping unreadable calendar object %s", resource.href)
                    continue
                events.append(event)

        events.sort(key=_start_sort_key)
        return events[:limit]

    async def get_event(self, calendar: CalendarInfo | str, uid: str) -> StoredEvent | None:
        """Fetch the stored document for *uid*; ``None`` when the resource does not exist."""
        target = await self._require_calendar(calendar)
        url = self._event_url(target, uid)
        response = await self.request("GET", url)
        if response.status_code == 404:
            return None
        self.check_response(response)
        href = self.path_of(url)
        document = response.text
        return StoredEvent(
            href=href,
            document=document,
            etag=response.headers.get("ETag"),
            event=deserialize(document, href=href),
        )

    async def _put_document(
        self,
        url: str,
        document: str,
        *,
        condition: dict[str, str],
    ) -> None:
        response = await self.request(
            "PUT",
            url,
            body=document,
            headers={"Content-Type": ICALENDAR_CONTENT_TYPE, **condition},
        )
        self.check_response(response)

    def _read_back(self, document: str, href: str) -> CalendarEvent:
        event = deserialize(document, href=href)
        if event is None:
            raise CalDAVError(f"Stored document at {href} could not be read back as an event")
        return event

    async def create_event(
        self,
        calendar: CalendarInfo | str,
        spec: EventSpec | Mapping[str, Any],
    ) -> CalendarEvent:
        target = await self._require_calendar(calendar)
        document, uid = serialize_event(spec)
        url = self._event_url(target, uid)
        await self._put_document(url, document, condition={"If-None-Match": "*"})
        logger.info("Created calendar event %s in %s", uid, target.display_name or target.url)
        return self._read_back(document, self.path_of(url))

    async def update_event(
        self,
        calendar: CalendarInfo | str,
        uid: str,
        patch: EventPatch | Mapping[str, Any],
    ) -> CalendarEvent:
        """Read, patch and conditionally rewrite the event *uid*.

        Raises:
            CalDAVRequestError: with status 404 when the event does not exist.
            CalDAVConflictError: when the event changed since it was read.
        """
        target = await self._require_calendar(calendar)
        stored = await self.get_event(target, uid)
        if stored is None:
            raise CalDAVRequestError(status_code=404, message=f"Event {uid} not found")

        document = apply_patch(stored.document, patch)
        condition = {"If-Match": stored.etag} if stored.etag else {}
        await self._put_document(self.url_for(stored.href), document, condition=condition)
        logger.info("Updated calendar event %s", uid)
        return self._read_back(document, stored.href)

    async def delete_event(
        self,
        calendar: CalendarInfo | str,
        uid: str,
        *,
        etag: str | None = None,
    ) -> bool:
        """Delete the event *uid*. Returns ``False`` when it was already gone."""
        target = await self._require_calendar(calendar)
        headers = {"If-Match": etag} if etag else None
        response = await self.request("DELETE", self._event_url(target, uid), headers=headers)
        if response.status_code == 404:
            return False
        self.check_response(response)
        logger.info("Deleted calendar event %s", uid)
        return True
