"""CardDAV transport for Fastmail address books."""

from __future__ import annotations

import logging

import httpx

from aibo.config import DEFAULT_CARDDAV_URL, AiboConfig
from aibo.contacts.vcard import AddressBookInfo, ContactInfo, parse_vcard
from aibo.dav import CALENDARSERVER_NS, CARDDAV_NS, DAV_NS, DEFAULT_TIMEOUT_S, DAVTransport, qname

logger = logging.getLogger(__name__)

_ADDRESS_BOOK_PROPFIND = (
    '<?xml version="1.0" encoding="utf-8"?>'
    f'<d:propfind xmlns:d="{DAV_NS}" xmlns:card="{CARDDAV_NS}" xmlns:cs="{CALENDARSERVER_NS}">'
    "<d:prop><d:resourcetype/><d:displayname/><cs:getctag/>"
    "<card:addressbook-description/></d:prop>"
    "</d:propfind>"
)

_ADDRESS_BOOK_QUERY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    f'<card:addressbook-query xmlns:d="{DAV_NS}" xmlns:card="{CARDDAV_NS}">'
    "<d:prop><d:getetag/><card:address-data/></d:prop>"
    "</card:addressbook-query>"
)


class ContactsError(RuntimeError):
    """Base error raised by the CardDAV client."""


class CardDAVRequestError(ContactsError):
    """Raised when the CardDAV server answers with a non-success status."""

    def __init__(self, *, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"CardDAV request failed ({status_code}): {message}")


class CardDAVClient(DAVTransport):
    """Read-only async CardDAV client."""

    service_name = "CardDAV"
    error_cls = ContactsError
    request_error_cls = CardDAVRequestError
    conflict_error_cls = CardDAVRequestError

    def __init__(
        self,
        *,
        username: str,
        password: str,
        base_url: str | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            base_url=base_url or DEFAULT_CARDDAV_URL.format(username=username),
            username=username,
            password=password,
            timeout_s=timeout_s,
            http_client=http_client,
        )

    @classmethod
    def from_config(
        cls,
        config: AiboConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> CardDAVClient:
        return cls(
            username=config.username,
            password=config.password,
            base_url=config.carddav_url,
            timeout_s=config.carddav.timeout_s,
            http_client=http_client,
        )

    async def list_address_books(self) -> list[AddressBookInfo]:
        resources = await self.multistatus("PROPFIND", self.base_url, _ADDRESS_BOOK_PROPFIND)
        return [
            AddressBookInfo(
                url=resource.href,
                display_name=resource.text(qname(DAV_NS, "displayname")) or "Unnamed",
                ctag=resource.text(qname(CALENDARSERVER_NS, "getctag")),
                description=resource.text(qname(CARDDAV_NS, "addressbook-description")),
            )
            for resource in resources
            if resource.has_resource_type(qname(CARDDAV_NS, "addressbook"))
        ]

    async def list_contacts(self, address_book: AddressBookInfo | str) -> list[ContactInfo]:
        """Every readable contact in *address_book*; cards without UID or FN are skipped."""
        href = address_book.url if isinstance(address_book, AddressBookInfo) else address_book
        resources = await self.multistatus("REPORT", self.url_for(href), _ADDRESS_BOOK_QUERY)
        contacts: list[ContactInfo] = []
        for resource in resources:
            card = resource.text(qname(CARDDAV_NS, "address-data"))
            if card is None:
                continue
            contact = parse_vcard(card, resource.href)
            if contact is None:
                logger.debug("Skipping unreadable vCard %s", resource.href)
                continue
            contacts.append(contact)
        return contacts
