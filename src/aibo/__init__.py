"""Fastmail adapter: calendar event codec, CalDAV/CardDAV transport and contacts."""

__version__ = "0.1.0"
