"""Unit tests for the CalDAV client over a mocked httpx transport."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, date, datetime

import httpx
import pytest

from aibo.calendar.caldav import CalDAVClient
from aibo.calendar.codec import serialize
from aibo.calendar.errors import (
    CalDAVConflictError,
    CalDAVError,
    CalDAVRequestError,
    CalendarNotFoundError,
)
from aibo.calendar.models import CalendarInfo
from aibo.config import AiboConfig

pytestmark = pytest.mark.unit

USERNAME = "me@fastmail.com"
HOME = "/dav/calendars/user/me@fastmail.com/"
PERSONAL = f"{HOME}Default/"
WORK = f"{HOME}Work/"
BASE_URL = f"https://caldav.fastmail.com{HOME}"
NOW = datetime(2024, 12, 1, 9, 0, tzinfo=UTC)

CALENDARS_BODY = f"""<?xml version="1.0" encoding="utf-8"?>
<d:multistatus xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav"
    xmlns:cs="http://calendarserver.org/ns/" xmlns:ic="http://apple.com/ns/ical/">
  <d:response>
    <d:href>{HOME}</d:href>
    <d:propstat>
      <d:prop><d:resourcetype><d:collection/></d:resourcetype></d:prop>
      <d:status>HTTP/1.1 200 OK</d:status>
    </d:propstat>
  </d:response>
  <d:response>
    <d:href>{PERSONAL}</d:href>
    <d:propstat>
      <d:prop>
        <d:resourcetype><d:collection/><c:calendar/></d:resourcetype>
        <d:displayname>Personal</d:displayname>
        <cs:getctag>ctag-1</cs:getctag>
        <ic:calendar-color>#3A87AD</ic:calendar-color>
      </d:prop>
      <d:status>HTTP/1.1 200 OK</d:status>
    </d:propstat>
    <d:propstat>
      <d:prop><c:calendar-description>hidden</c:calendar-description></d:prop>
      <d:status>HTTP/1.1 404 Not Found</d:status>
    </d:propstat>
  </d:response>
  <d:response>
    <d:href>{WORK}</d:href>
    <d:propstat>
      <d:prop>
        <d:resourcetype><d:collection/><c:calendar/></d:resourcetype>
        <d:displayname>Work</d:displayname>
        <c:calendar-description>Office events</c:calendar-description>
      </d:prop>
      <d:status>HTTP/1.1 200 OK</d:status>
    </d:propstat>
  </d:response>
</d:multistatus>
"""


def _event_document(uid: str, summary: str, start: str, **fields) -> str:
    return serialize({"summary": summary, "start": start, **fields}, uid=uid, now=NOW)


def _events_body(calendar: str, documents: dict[str, str]) -> str:
    responses = "".join(
        f"<d:response><d:href>{calendar}{name}</d:href>"
        "<d:propstat><d:prop>"
        f'<d:getetag>"{name}"</d:getetag>'
        f"<c:calendar-data>{document}</c:calendar-data>"
        "</d:prop><d:status>HTTP/1.1 200 OK</d:status></d:propstat></d:response>"
        for name, document in documents.items()
    )
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        '<d:multistatus xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav">'
        f"{responses}</d:multistatus>"
    )


def _multistatus(body: str) -> httpx.Response:
    return httpx.Response(207, text=body, headers={"Content-Type": "application/xml"})


def _make_client(handler: Callable[[httpx.Request], httpx.Response]) -> CalDAVClient:
    transport = httpx.MockTransport(handler)
    return CalDAVClient(
        username=USERNAME,
        password="app-password",
        http_client=httpx.AsyncClient(transport=transport),
    )


# ---------------------------------------------------------------------------
# Calendars
# ---------------------------------------------------------------------------


class TestListCalendars:
    async def test_discovers_calendar_collections(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return _multistatus(CALENDARS_BODY)

        client = _make_client(handler)
        calendars = await client.list_calendars()

        assert calendars == [
            CalendarInfo(url=PERSONAL, display_name="Personal", ctag="ctag-1", color="#3A87AD"),
            CalendarInfo(url=WORK, display_name="Work", description="Office events"),
        ]
        (request,) = requests
        assert request.method == "PROPFIND"
        assert str(request.url) == BASE_URL
        assert request.headers["Depth"] == "1"
        assert request.headers["Authorization"].startswith("Basic ")
        assert b"getctag" in request.content

    async def test_listing_is_cached_until_refreshed(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return _multistatus(CALENDARS_BODY)

        client = _make_client(handler)
        await client.list_calendars()
        await client.list_calendars()
        assert len(requests) == 1

        await client.list_calendars(refresh=True)
        assert len(requests) == 2

        client.invalidate_calendars()
        await client.list_calendars()
        assert len(requests) == 3

    async def test_cached_listing_is_a_copy(self):
        client = _make_client(lambda request: _multistatus(CALENDARS_BODY))
        first = await client.list_calendars()
        first.clear()
        assert len(await client.list_calendars()) == 2

    async def test_missing_display_name_defaults(self):
        body = CALENDARS_BODY.replace("<d:displayname>Work</d:displayname>", "")
        client = _make_client(lambda request: _multistatus(body))
        calendars = await client.list_calendars()
        assert calendars[1].display_name == "Unnamed"

    async def test_server_error_raises_request_error(self):
        client = _make_client(lambda request: httpx.Response(401, text="Unauthorized\n  login"))
        with pytest.raises(CalDAVRequestError) as exc_info:
            await client.list_calendars()
        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "Unauthorized login"

    async def test_unreadable_multistatus_raises(self):
        client = _make_client(lambda request: _multistatus("<not-xml"))
        with pytest.raises(CalDAVError):
            await client.list_calendars()

    async def test_transport_failure_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _make_client(handler)
        with pytest.raises(CalDAVError, match="connection refused"):
            await client.list_calendars()


class TestResolveCalendar:
    @pytest.mark.parametrize(
        ("needle", "expected"),
        [
            ("Personal", PERSONAL),
            ("  work ", WORK),
            (PERSONAL, PERSONAL),
            (f"https://caldav.fastmail.com{WORK}", WORK),
        ],
    )
    async def test_matches(self, needle: str, expected: str):
        client = _make_client(lambda request: _multistatus(CALENDARS_BODY))
        calendar = await client.resolve_calendar(needle)
        assert calendar is not None
        assert calendar.url == expected

    @pytest.mark.parametrize("needle", ["Holidays", "", "   "])
    async def test_no_match(self, needle: str):
        client = _make_client(lambda request: _multistatus(CALENDARS_BODY))
        assert await client.resolve_calendar(needle) is None


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class TestListEvents:
    def _handler(self, requests: list[httpx.Request]):
        personal = _events_body(
            PERSONAL,
            {
                "later.ics": _event_document("later", "Later", "2024-12-05T09:00:00Z"),
                "broken.ics": "BEGIN:VCALENDAR\nBEGIN:VEVENT\nSUMMARY:no uid\nEND:VEVENT\n",
                "morning.ics": _event_document("morning", "Morning", "2024-12-04T10:00:00Z"),
            },
        )
        work = _events_body(
            WORK,
            {"holiday.ics": _event_document("holiday", "Holiday", "2024-12-04", all_day=True)},
        )

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.method == "PROPFIND":
                return _multistatus(CALENDARS_BODY)
            if request.url.path == PERSONAL:
                return _multistatus(personal)
            if request.url.path == WORK:
                return _multistatus(work)
            return httpx.Response(404)

        return handler

    async def test_single_calendar_sorted_and_readable_only(self):
        requests: list[httpx.Request] = []
        client = _make_client(self._handler(requests))

        events = await client.list_events("Personal")

        assert [event.uid for event in events] == ["morning", "later"]
        assert events[0].href == f"{PERSONAL}morning.ics"
        report = requests[-1]
        assert report.method == "REPORT"
        assert report.headers["Depth"] == "1"
        assert b"time-range" not in report.content

    async def test_all_calendars_are_merged(self):
        client = _make_client(self._handler([]))
        events = await client.list_events()
        assert [event.uid for event in events] == ["holiday", "morning", "later"]

    async def test_limit(self):
        client = _make_client(self._handler([]))
        events = await client.list_events(limit=1)
        assert [event.uid for event in events] == ["holiday"]

    async def test_time_range_is_sent(self):
        requests: list[httpx.Request] = []
        client = _make_client(self._handler(requests))
        await client.list_events(
            CalendarInfo(url=PERSONAL),
            start=datetime(2024, 12, 1, tzinfo=UTC),
            end=date(2024, 12, 8),
        )
        assert b'start="20241201T000000Z" end="20241208T000000Z"' in requests[-1].content

    async def test_open_ended_range_is_closed(self):
        requests: list[httpx.Request] = []
        client = _make_client(self._handler(requests))
        await client.list_events(PERSONAL, start=datetime(2024, 12, 1, tzinfo=UTC))
        assert b'end="21000101T000000Z"' in requests[-1].content

    async def test_unknown_calendar(self):
        client = _make_client(self._handler([]))
        with pytest.raises(CalendarNotFoundError, match="Holidays"):
            await client.list_events("Holidays")

    async def test_limit_must_be_positive(self):
        client = _make_client(self._handler([]))
        with pytest.raises(ValueError):
            await client.list_events("Personal", limit=0)


class TestEventWrites:
    STORED = _event_document(
        "evt-1@fastmail-aibo",
        "Planning",
        "2024-12-04T10:00:00Z",
        location="Room 1",
    )
    EVENT_PATH = f"{PERSONAL}evt-1@fastmail-aibo.ics"

    async def test_get_event(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "GET"
            assert request.url.path == self.EVENT_PATH
            return httpx.Response(200, text=self.STORED, headers={"ETag": '"etag-1"'})

        client = _make_client(handler)
        stored = await client.get_event(CalendarInfo(url=PERSONAL), "evt-1@fastmail-aibo")

        assert stored is not None
        assert stored.href == self.EVENT_PATH
        assert stored.etag == '"etag-1"'
        assert stored.document == self.STORED
        assert stored.event is not None
        assert stored.event.summary == "Planning"

    async def test_get_missing_event(self):
        client = _make_client(lambda request: httpx.Response(404))
        assert await client.get_event(CalendarInfo(url=PERSONAL), "nope") is None

    async def test_create_event(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.method == "PROPFIND":
                return _multistatus(CALENDARS_BODY)
            return httpx.Response(201)

        client = _make_client(handler)
        event = await client.create_event(
            "Personal", {"summary": "Dinner", "start": "2024-12-06T18:00:00Z"}
        )

        put = requests[-1]
        assert put.method == "PUT"
        assert put.headers["If-None-Match"] == "*"
        assert put.headers["Content-Type"] == "text/calendar; charset=utf-8"
        assert put.url.path == f"{PERSONAL}{event.uid}.ics"
        assert event.href == put.url.path
        assert event.summary == "Dinner"
        assert b"SUMMARY:Dinner\r\n" in put.content

    async def test_create_conflict(self):
        client = _make_client(lambda request: httpx.Response(412))
        with pytest.raises(CalDAVConflictError):
            await client.create_event(
                CalendarInfo(url=PERSONAL), {"summary": "x", "start": "2024-12-06"}
            )

    async def test_update_event_patches_stored_document(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.method == "GET":
                return httpx.Response(200, text=self.STORED, headers={"ETag": '"etag-1"'})
            return httpx.Response(204)

        client = _make_client(handler)
        event = await client.update_event(
            CalendarInfo(url=PERSONAL), "evt-1@fastmail-aibo", {"summary": "Planning v2"}
        )

        put = requests[-1]
        assert put.method == "PUT"
        assert put.url.path == self.EVENT_PATH
        assert put.headers["If-Match"] == '"etag-1"'
        assert b"SUMMARY:Planning v2\r\n" in put.content
        assert b"LOCATION:Room 1\r\n" in put.content
        assert event.summary == "Planning v2"
        assert event.location == "Room 1"

    async def test_update_conflict(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, text=self.STORED, headers={"ETag": '"etag-1"'})
            return httpx.Response(412, text="Precondition Failed")

        client = _make_client(handler)
        with pytest.raises(CalDAVConflictError) as exc_info:
            await client.update_event(
                CalendarInfo(url=PERSONAL), "evt-1@fastmail-aibo", {"location": ""}
            )
        assert exc_info.value.status_code == 412

    async def test_update_missing_event(self):
        client = _make_client(lambda request: httpx.Response(404))
        with pytest.raises(CalDAVRequestError) as exc_info:
            await client.update_event(CalendarInfo(url=PERSONAL), "nope", {"summary": "x"})
        assert exc_info.value.status_code == 404

    async def test_delete_event(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(204)

        client = _make_client(handler)
        deleted = await client.delete_event(
            CalendarInfo(url=PERSONAL), "evt-1@fastmail-aibo", etag='"etag-1"'
        )

        assert deleted is True
        assert requests[0].method == "DELETE"
        assert requests[0].url.path == self.EVENT_PATH
        assert requests[0].headers["If-Match"] == '"etag-1"'

    async def test_delete_missing_event(self):
        client = _make_client(lambda request: httpx.Response(404))
        assert await client.delete_event(CalendarInfo(url=PERSONAL), "nope") is False

    async def test_delete_server_error(self):
        client = _make_client(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(CalDAVRequestError) as exc_info:
            await client.delete_event(CalendarInfo(url=PERSONAL), "evt-1@fastmail-aibo")
        assert exc_info.value.status_code == 500
        assert "boom" in str(exc_info.value)


class TestClientLifecycle:
    def test_from_config(self):
        config = AiboConfig(username=USERNAME, password="pw")
        client = CalDAVClient.from_config(config)
        assert client.base_url == BASE_URL
        assert client.username == USERNAME

    def test_base_url_gets_trailing_slash(self):
        client = CalDAVClient(username="u", password="p", base_url="https://dav.example.com/cal")
        assert client.base_url == "https://dav.example.com/cal/"

    async def test_shutdown_closes_owned_client(self):
        client = CalDAVClient(username="u", password="p")
        await client.shutdown()
        assert client._http_client.is_closed

    async def test_shutdown_leaves_injected_client_open(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200))
        http_client = httpx.AsyncClient(transport=transport)
        client = CalDAVClient(username="u", password="p", http_client=http_client)
        await client.shutdown()
        assert not http_client.is_closed
        await http_client.aclose()
