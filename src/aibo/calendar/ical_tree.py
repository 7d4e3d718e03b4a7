"""Typed adapter over icalendar's content-line layer.

This is the only module that talks to icalendar's parser directly. Callers
work with :class:`Component` and :class:`Property`:

- ``parse(text)`` unfolds and splits content lines and builds the component tree
- ``render(component)`` emits CRLF-terminated, folded text
- ``Component.get`` / ``set`` / ``add`` / ``remove`` manage properties
- ``Component.first`` / ``add_subcomponent`` / ``remove_subcomponents`` manage
  nested blocks

Property values are kept in their raw wire form (still escaped). Properties
read from a document remember their original unfolded line and are emitted
unchanged unless replaced, so untouched fields survive a parse/render cycle
byte-for-byte.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field

from icalendar import Parameters
from icalendar.parser import Contentline, Contentlines

from aibo.calendar.errors import DocumentParseError

ParamValue = str | list[str]


def _to_text(value: bytes | str) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


def build_parameters(params: Mapping[str, ParamValue] | None) -> Parameters:
    parameters = Parameters()
    if params:
        for key, value in params.items():
            parameters[key.upper()] = value
    return parameters


@dataclass
class Property:
    """One content line: ``NAME[;PARAM=value...]:value``."""

    name: str
    value: str
    params: Parameters = field(default_factory=Parameters)
    line: str | None = None

    def param(self, key: str) -> str | None:
        raw = self.params.get(key.upper())
        if raw is None:
            return None
        if isinstance(raw, list):
            return str(raw[0]) if raw else None
        return str(raw)

    def to_line(self) -> str:
        if self.line is not None:
            return self.line
        if self.params:
            rendered = _to_text(self.params.to_ical(sorted=False))
            return f"{self.name};{rendered}:{self.value}"
        return f"{self.name}:{self.value}"


@dataclass
class Component:
    """A ``BEGIN:NAME`` ... ``END:NAME`` block."""

    name: str
    properties: list[Property] = field(default_factory=list)
    subcomponents: list[Component] = field(default_factory=list)

    # -- properties --------------------------------------------------------

    def get(self, name: str) -> Property | None:
        upper = name.upper()
        for prop in self.properties:
            if prop.name == upper:
                return prop
        return None

    def get_all(self, name: str) -> list[Property]:
        upper = name.upper()
        return [prop for prop in self.properties if prop.name == upper]

    def value(self, name: str) -> str | None:
        prop = self.get(name)
        return prop.value if prop is not None else None

    def has(self, name: str) -> bool:
        return self.get(name) is not None

    def set(
        self,
        name: str,
        value: str,
        params: Mapping[str, ParamValue] | None = None,
    ) -> Property:
        """Replace the first *name* property in place (dropping duplicates) or append one."""
        upper = name.upper()
        new_prop = Property(upper, value, build_parameters(params))
        replaced = False
        kept: list[Property] = []
        for prop in self.properties:
            if prop.name != upper:
                kept.append(prop)
            elif not replaced:
                kept.append(new_prop)
                replaced = True
        if not replaced:
            kept.append(new_prop)
        self.properties = kept
        return new_prop

    def add(
        self,
        name: str,
        value: str,
        params: Mapping[str, ParamValue] | None = None,
    ) -> Property:
        prop = Property(name.upper(), value, build_parameters(params))
        self.properties.append(prop)
        return prop

    def remove(self, name: str) -> int:
        upper = name.upper()
        before = len(self.properties)
        self.properties = [prop for prop in self.properties if prop.name != upper]
        return before - len(self.properties)

    def insert_after(
        self,
        anchor: str,
        name: str,
        value: str,
        params: Mapping[str, ParamValue] | None = None,
    ) -> Property:
        """Insert a new property after the last *anchor* property, or append."""
        prop = Property(name.upper(), value, build_parameters(params))
        upper_anchor = anchor.upper()
        position = None
        for index, existing in enumerate(self.properties):
            if existing.name == upper_anchor:
                position = index + 1
        if position is None:
            self.properties.append(prop)
        else:
            self.properties.insert(position, prop)
        return prop

    # -- subcomponents -----------------------------------------------------

    def first(self, name: str) -> Component | None:
        upper = name.upper()
        for component in self.subcomponents:
            if component.name == upper:
                return component
        return None

    def walk(self, name: str) -> Iterator[Component]:
        upper = name.upper()
        for component in self.subcomponents:
            if component.name == upper:
                yield component

    def add_subcomponent(self, component: Component) -> Component:
        self.subcomponents.append(component)
        return component

    def remove_subcomponents(self, name: str) -> int:
        upper = name.upper()
        before = len(self.subcomponents)
        self.subcomponents = [c for c in self.subcomponents if c.name != upper]
        return before - len(self.subcomponents)

    # -- output ------------------------------------------------------------

    def lines(self) -> Iterator[str]:
        yield f"BEGIN:{self.name}"
        for prop in self.properties:
            yield prop.to_line()
        for component in self.subcomponents:
            yield from component.lines()
        yield f"END:{self.name}"


def _split_line(line: str) -> tuple[str, Parameters, str]:
    name_end: int | None = None
    value_start: int | None = None
    in_quotes = False
    for index, char in enumerate(line):
        if char == '"':
            in_quotes = not in_quotes
        elif not in_quotes and char in ";:":
            if name_end is None:
                name_end = index
            if char == ":":
                value_start = index + 1
                break

    if not name_end or value_start is None:
        raise DocumentParseError(f"Malformed content line: {line[:60]!r}")

    raw_params = line[name_end + 1 : value_start - 1]
    try:
        params = Parameters.from_ical(raw_params) if raw_params else Parameters()
    except ValueError as exc:
        raise DocumentParseError(f"Malformed parameters in line: {line[:60]!r}") from exc
    return line[:name_end].upper(), params, line[value_start:]


def parse(text: str) -> Component:
    """Parse *text* into the first top-level component it contains."""
    try:
        content_lines = Contentlines.from_ical(text)
    except ValueError as exc:
        raise DocumentParseError(f"Unreadable content lines: {exc}") from exc

    root: Component | None = None
    stack: list[Component] = []
    for content_line in content_lines:
        line = str(content_line)
        if not line.strip():
            continue
        name, params, value = _split_line(line)

        if name == "BEGIN":
            if root is not None and not stack:
                break
            component = Component(value.strip().upper())
            if stack:
                stack[-1].subcomponents.append(component)
            else:
                root = component
            stack.append(component)
        elif name == "END":
            closing = value.strip().upper()
            if not stack or stack[-1].name != closing:
                raise DocumentParseError(f"Unexpected END:{closing}")
            stack.pop()
        else:
            if not stack:
                raise DocumentParseError(f"Property {name} appears outside of a component")
            stack[-1].properties.append(Property(name, value, params, line=line))

    if root is None:
        raise DocumentParseError("No component found in document")
    if stack:
        raise DocumentParseError(f"Component {stack[-1].name} is not terminated")
    return root


def render(component: Component) -> str:
    """Render *component* as folded, CRLF-terminated text."""
    return "".join(f"{_to_text(Contentline(line).to_ical())}\r\n" for line in component.lines())
