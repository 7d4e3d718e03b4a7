"""vCard parsing, search and CSV views."""

from __future__ import annotations

import logging
from collections.abc import Iterable

import vobject
from pydantic import BaseModel, ConfigDict, Field

from aibo.core.tabular import render_csv

logger = logging.getLogger(__name__)

ADDRESS_BOOK_COLUMNS = ("url", "display_name", "ctag", "description")
CONTACT_COLUMNS = ("uid", "url", "full_name", "emails", "phones", "organization")
DEFAULT_VALUE_TYPE = "other"


class AddressBookInfo(BaseModel):
    """An address book collection discovered on the CardDAV server."""

    model_config = ConfigDict(extra="forbid")

    url: str
    display_name: str | None = None
    ctag: str | None = None
    description: str | None = None


class ContactValue(BaseModel):
    """A typed email address or phone number."""

    model_config = ConfigDict(extra="forbid")

    type: str = DEFAULT_VALUE_TYPE
    value: str


class ContactInfo(BaseModel):
    model_config = ConfigDict(extra="forbid")

    uid: str
    url: str | None = None
    full_name: str
    emails: list[ContactValue] = Field(default_factory=list)
    phones: list[ContactValue] = Field(default_factory=list)
    organization: str | None = None


def _value_type(line: vobject.base.ContentLine) -> str:
    types = line.params.get("TYPE") or line.singletonparams
    if not types:
        return DEFAULT_VALUE_TYPE
    return str(types[0]).strip().lower() or DEFAULT_VALUE_TYPE


def _text(card: vobject.base.Component, name: str) -> str:
    if not hasattr(card, name):
        return ""
    return str(getattr(card, name).value).strip()


def _typed_values(card: vobject.base.Component, name: str) -> list[ContactValue]:
    values: list[ContactValue] = []
    for line in getattr(card, f"{name}_list", []):
        value = str(line.value).strip()
        if value:
            values.append(ContactValue(type=_value_type(line), value=value))
    return values


def _organization(card: vobject.base.Component) -> str | None:
    if not hasattr(card, "org") or not card.org.value:
        return None
    # ORG is structured; the organization name is the first component.
    name = card.org.value[0]
    if isinstance(name, list):
        name = ",".join(name)
    return str(name).strip() or None


def parse_vcard(text: str, href: str | None = None) -> ContactInfo | None:
    """Read one VCARD. Returns ``None`` unless the card carries both UID and FN."""
    if "BEGIN:VCARD" not in text.upper():
        return None
    try:
        card = vobject.readOne(text)
    except (vobject.base.VObjectError, ValueError) as exc:
        logger.debug("Unparseable vCard (href=%s): %s", href, exc)
        return None
    if card.name != "VCARD":
        return None

    uid = _text(card, "uid")
    full_name = _text(card, "fn")
    if not uid or not full_name:
        return None

    return ContactInfo(
        uid=uid,
        url=href,
        full_name=full_name,
        emails=_typed_values(card, "email"),
        phones=_typed_values(card, "tel"),
        organization=_organization(card),
    )


def search_contacts(contacts: Iterable[ContactInfo], query: str) -> list[ContactInfo]:
    """Case-insensitive substring match over name, email addresses and organization."""
    needle = query.strip().casefold()
    if not needle:
        return list(contacts)
    matches: list[ContactInfo] = []
    for contact in contacts:
        haystack = [contact.full_name, *(email.value for email in contact.emails)]
        if contact.organization:
            haystack.append(contact.organization)
        if any(needle in value.casefold() for value in haystack):
            matches.append(contact)
    return matches


def format_address_books_csv(address_books: Iterable[AddressBookInfo]) -> str:
    return render_csv(
        ADDRESS_BOOK_COLUMNS,
        ((book.url, book.display_name, book.ctag, book.description) for book in address_books),
    )


def format_contacts_csv(contacts: Iterable[ContactInfo]) -> str:
    """One row per contact; emails and phones are ``;``-joined values."""
    return render_csv(
        CONTACT_COLUMNS,
        (
            (
                contact.uid,
                contact.url,
                contact.full_name,
                ";".join(email.value for email in contact.emails),
                ";".join(phone.value for phone in contact.phones),
                contact.organization,
            )
            for contact in contacts
        ),
    )
