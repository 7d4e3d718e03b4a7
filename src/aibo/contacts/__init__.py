"""Fastmail contacts: vCard parsing, search, CSV views and the CardDAV client."""

from aibo.contacts.carddav import CardDAVClient, CardDAVRequestError, ContactsError
from aibo.contacts.vcard import (
    AddressBookInfo,
    ContactInfo,
    ContactValue,
    format_address_books_csv,
    format_contacts_csv,
    parse_vcard,
    search_contacts,
)

__all__ = [
    "AddressBookInfo",
    "CardDAVClient",
    "CardDAVRequestError",
    "ContactInfo",
    "ContactValue",
    "ContactsError",
    "format_address_books_csv",
    "format_contacts_csv",
    "parse_vcard",
    "search_contacts",
]
