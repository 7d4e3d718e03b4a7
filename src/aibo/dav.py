"""Async WebDAV transport shared by the CalDAV and CardDAV clients.

Requests go through one ``httpx.AsyncClient`` with Basic auth. Multistatus
bodies are parsed with ElementTree into :class:`DAVResource` entries holding
only the properties the server answered with a 200 propstat.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, ClassVar
from urllib.parse import urljoin, urlsplit

import httpx

logger = logging.getLogger(__name__)

DAV_NS = "DAV:"
CALDAV_NS = "urn:ietf:params:xml:ns:caldav"
CARDDAV_NS = "urn:ietf:params:xml:ns:carddav"
CALENDARSERVER_NS = "http://calendarserver.org/ns/"
APPLE_ICAL_NS = "http://apple.com/ns/ical/"

XML_CONTENT_TYPE = "application/xml; charset=utf-8"
DEFAULT_TIMEOUT_S = 30.0


def qname(namespace: str, name: str) -> str:
    """ElementTree tag for *name* in *namespace*: ``{DAV:}href``."""
    return f"{{{namespace}}}{name}"


@dataclass(frozen=True)
class DAVResource:
    """One ``<d:response>`` of a multistatus body."""

    href: str
    props: dict[str, ET.Element] = field(default_factory=dict)

    def text(self, tag: str) -> str | None:
        element = self.props.get(tag)
        if element is None or element.text is None:
            return None
        return element.text.strip() or None

    def has_resource_type(self, tag: str) -> bool:
        resource_type = self.props.get(qname(DAV_NS, "resourcetype"))
        return resource_type is not None and resource_type.find(tag) is not None


def parse_multistatus(payload: bytes | str) -> list[DAVResource]:
    """Parse a 207 body. Raises ``xml.etree.ElementTree.ParseError`` on malformed XML."""
    root = ET.fromstring(payload)
    resources: list[DAVResource] = []
    for response in root.iter(qname(DAV_NS, "response")):
        href = (response.findtext(qname(DAV_NS, "href")) or "").strip()
        if not href:
            continue
        props: dict[str, ET.Element] = {}
        for propstat in response.findall(qname(DAV_NS, "propstat")):
            status = propstat.findtext(qname(DAV_NS, "status")) or ""
            if " 200 " not in f"{status} ":
                continue
            prop = propstat.find(qname(DAV_NS, "prop"))
            if prop is None:
                continue
            for child in prop:
                props[child.tag] = child
        resources.append(DAVResource(href=href, props=props))
    return resources


def safe_error_message(response: httpx.Response) -> str:
    raw_text = response.text.strip()
    if raw_text:
        return " ".join(raw_text.split())[:200]
    return response.reason_phrase or "Request failed without an error payload"


class DAVTransport:
    """Authenticated request helpers for one DAV service.

    Subclasses pick the exception types raised for transport failures,
    non-2xx answers and rejected conditional writes (HTTP 412).
    """

    service_name: ClassVar[str] = "DAV"
    error_cls: ClassVar[type[Exception]] = RuntimeError
    request_error_cls: ClassVar[type[Exception]] = RuntimeError
    conflict_error_cls: ClassVar[type[Exception]] = RuntimeError

    def __init__(
        self,
        *,
        base_url: str,
        username: str,
        password: str,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url if base_url.endswith("/") else f"{base_url}/"
        self.username = username
        self._auth = httpx.BasicAuth(username, password)
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout_s)

    async def shutdown(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    def url_for(self, href: str) -> str:
        return urljoin(self.base_url, href)

    @staticmethod
    def path_of(url: str) -> str:
        return urlsplit(url).path

    async def request(
        self,
        method: str,
        url: str,
        *,
        body: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._http_client.request(
                method,
                url,
                content=body.encode("utf-8") if body is not None else None,
                headers=headers,
                auth=self._auth,
            )
        except httpx.HTTPError as exc:
            raise self.error_cls(f"{self.service_name} {method} request failed: {exc}") from exc
        logger.debug("%s %s %s -> %d", self.service_name, method, url, response.status_code)
        return response

    def check_response(self, response: httpx.Response) -> None:
        if 200 <= response.status_code < 300:
            return
        error_cls: Any = self.request_error_cls
        if response.status_code == 412:
            error_cls = self.conflict_error_cls
        raise error_cls(status_code=response.status_code, message=safe_error_message(response))

    async def multistatus(
        self,
        method: str,
        url: str,
        body: str,
        *,
        depth: str = "1",
    ) -> list[DAVResource]:
        """Send a PROPFIND or REPORT and parse its multistatus answer."""
        response = await self.request(
            method,
            url,
            body=body,
            headers={"Depth": depth, "Content-Type": XML_CONTENT_TYPE},
        )
        self.check_response(response)
        try:
            return parse_multistatus(response.content)
        except ET.ParseError as exc:
            raise self.error_cls(
                f"{self.service_name} {method} returned an unreadable multistatus body: {exc}"
            ) from exc
