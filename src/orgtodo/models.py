"""orgtodo data models: exceptions, outline tree dataclasses and coercion helpers."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from orgtodo.constants import EFFORT_PROPERTY

_PROPERTY_LINE_PATTERN = re.compile(r"^[ \t]*:([^:\s]+):(?:[ \t]+(.*?))?[ \t]*$")
_DRAWER_OPEN_PATTERN = re.compile(r"^[ \t]*:PROPERTIES:[ \t]*$", re.IGNORECASE)
_DRAWER_END_PATTERN = re.compile(r"^[ \t]*:END:[ \t]*$", re.IGNORECASE)
_PLANNING_PATTERN = re.compile(r"^[ \t]*(?:SCHEDULED|DEADLINE|CLOSED):")
_EFFORT_CLOCK_PATTERN = re.compile(r"^(\d+):([0-5]\d)$")
_EFFORT_UNITS_PATTERN = re.compile(
    r"^(?:(\d+(?:\.\d+)?)\s*h)?\s*(?:(\d+)\s*m(?:in)?)?$", re.IGNORECASE
)


def _coerce_bool(value: Any, *, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes", "on"}
    return bool(value) if value is not None else default


class OrgTodoError(RuntimeError):
    """Base class for failures surfaced by the outline engine."""


class ParseError(OrgTodoError):
    """Raised when a document has unbalanced structure."""

    def __init__(self, message: str, *, line: int) -> None:
        super().__init__(f"line {line}: {message}")
        self.line = line


class StorageError(OrgTodoError):
    """Raised when the document cannot be read or written."""

    def __init__(self, message: str, *, path: Path | None = None) -> None:
        super().__init__(message)
        self.path = path


class NotFoundError(OrgTodoError):
    """Raised when a section or item reference does not resolve after a reload."""


class ConfigurationError(OrgTodoError):
    """Raised when configuration cannot be loaded or validated."""


def _line_ending(line: str) -> str:
    if line.endswith("\r\n"):
        return "\r\n"
    if line.endswith("\n"):
        return "\n"
    return ""


def _strip_ending(line: str) -> str:
    return line.rstrip("\r\n")


def _property_line(indent: str, key: str, value: str, ending: str) -> str:
    if value:
        return f"{indent}:{key}: {value}{ending}"
    return f"{indent}:{key}:{ending}"


def parse_effort(value: Any) -> int:
    """Return an effort estimate in minutes.

    Accepts ``H:MM`` clock values, bare minutes (``90``), and unit forms
    such as ``90m``, ``1h30m`` or ``1.5h``.
    """
    text = str(value).strip()
    if not text:
        raise ValueError("effort must not be empty")
    if text.isdigit():
        return int(text)
    clock = _EFFORT_CLOCK_PATTERN.match(text)
    if clock:
        return int(clock.group(1)) * 60 + int(clock.group(2))
    units = _EFFORT_UNITS_PATTERN.match(text)
    if units and (units.group(1) or units.group(2)):
        hours = float(units.group(1) or 0)
        minutes = int(units.group(2) or 0)
        return int(round(hours * 60)) + minutes
    raise ValueError(f"unsupported effort value '{text}'; expected H:MM, 90m, or 1h30m")


def format_effort(minutes: int) -> str:
    if minutes < 0:
        raise ValueError("effort must be >= 0 minutes")
    return f"{minutes // 60}:{minutes % 60:02d}"


@dataclass(eq=False)
class Entry:
    """A level-2 heading under a section; an item when it carries a keyword."""

    title: str
    keyword: str | None = None
    priority: str | None = None
    tags: list[str] = field(default_factory=list)
    body: list[str] = field(default_factory=list)
    stars: str = "**"
    offset: int = -1
    line: int = 0
    raw_headline: str | None = None

    @property
    def is_item(self) -> bool:
        return self.keyword is not None

    def touch(self) -> None:
        """Drop the raw headline so the printer synthesises it from fields."""
        self.raw_headline = None

    # -- property drawer -------------------------------------------------

    def _drawer_span(self) -> tuple[int, int] | None:
        index = 0
        while index < len(self.body) and _PLANNING_PATTERN.match(self.body[index]):
            index += 1
        if index >= len(self.body) or not _DRAWER_OPEN_PATTERN.match(_strip_ending(self.body[index])):
            return None
        for end in range(index + 1, len(self.body)):
            if _DRAWER_END_PATTERN.match(_strip_ending(self.body[end])):
                return index, end
        return None

    @property
    def properties(self) -> dict[str, str]:
        span = self._drawer_span()
        if span is None:
            return {}
        start, end = span
        props: dict[str, str] = {}
        for raw_line in self.body[start + 1 : end]:
            match = _PROPERTY_LINE_PATTERN.match(_strip_ending(raw_line))
            if match:
                props[match.group(1)] = match.group(2) or ""
        return props

    def get_property(self, key: str) -> str | None:
        wanted = key.lower()
        for name, value in self.properties.items():
            if name.lower() == wanted:
                return value
        return None

    def set_property(self, key: str, value: str | None) -> bool:
        """Replace, add, or (with ``None``) delete a drawer property.

        Returns True when the body changed.
        """
        wanted = key.lower()
        span = self._drawer_span()
        if span is not None:
            start, end = span
            for index in range(start + 1, end):
                match = _PROPERTY_LINE_PATTERN.match(_strip_ending(self.body[index]))
                if not match or match.group(1).lower() != wanted:
                    continue
                if value is None:
                    del self.body[index]
                    if end - start == 2:
                        del self.body[start : start + 2]
                    return True
                current = self.body[index]
                indent = current[: len(current) - len(current.lstrip())]
                ending = _line_ending(current) or "\n"
                replacement = _property_line(indent, match.group(1), value, ending)
                if replacement == current:
                    return False
                self.body[index] = replacement
                return True
            if value is None:
                return False
            closing = self.body[end]
            indent = closing[: len(closing) - len(closing.lstrip())]
            self.body.insert(end, _property_line(indent, key, value, _line_ending(closing) or "\n"))
            return True
        if value is None:
            return False
        insert_at = 0
        while insert_at < len(self.body) and _PLANNING_PATTERN.match(self.body[insert_at]):
            insert_at += 1
        self.body[insert_at:insert_at] = [
            ":PROPERTIES:\n",
            _property_line("", key, value, "\n"),
            ":END:\n",
        ]
        return True

    @property
    def effort(self) -> int | None:
        raw = self.get_property(EFFORT_PROPERTY)
        if raw is None or not raw.strip():
            return None
        try:
            return parse_effort(raw)
        except ValueError:
            return None

    # -- planning line ---------------------------------------------------

    def set_closed(self, stamp: str | None) -> bool:
        """Set or clear the ``CLOSED:`` entry of the planning line."""
        closed_pattern = re.compile(r"CLOSED:[ \t]*\[[^\]]*\][ \t]*")
        if self.body and _PLANNING_PATTERN.match(self.body[0]):
            line = self.body[0]
            ending = _line_ending(line) or "\n"
            content = _strip_ending(line)
            stripped = closed_pattern.sub("", content).rstrip()
            if stamp is not None:
                indent = content[: len(content) - len(content.lstrip())]
                rest = stripped.strip()
                updated = f"{indent}CLOSED: {stamp}" + (f" {rest}" if rest else "")
            else:
                updated = stripped
            if not updated.strip():
                del self.body[0]
                return True
            if updated + ending == line:
                return False
            self.body[0] = updated + ending
            return True
        if stamp is None:
            return False
        self.body.insert(0, f"CLOSED: {stamp}\n")
        return True


@dataclass(eq=False)
class Section:
    """A level-1 heading that groups items."""

    name: str
    tags: list[str] = field(default_factory=list)
    body: list[str] = field(default_factory=list)
    children: list[Entry] = field(default_factory=list)
    stars: str = "*"
    offset: int = -1
    line: int = 0
    raw_headline: str | None = None

    @property
    def items(self) -> list[Entry]:
        return [child for child in self.children if child.is_item]


@dataclass
class Document:
    preamble: list[str] = field(default_factory=list)
    sections: list[Section] = field(default_factory=list)
    todo_keywords: tuple[str, ...] = ()
    done_keywords: tuple[str, ...] = ()
    in_buffer_cycle: tuple[str, ...] = ()
    source_text: str = ""


@dataclass(frozen=True)
class ItemRef:
    """Reference to an item captured from a listing.

    ``offset`` is only a tie-breaker: engines re-resolve the reference by
    section name and title inside each fresh parse.
    """

    section: str
    title: str
    offset: int = -1


@dataclass(frozen=True)
class ActionResult:
    action: str
    section: str
    title: str
    keyword: str | None
    offset: int
    line: int
    path: Path
    changed: bool
    message: str


@dataclass(frozen=True)
class PriorityRange:
    highest: str
    lowest: str

    def allowed(self) -> tuple[str, ...]:
        return tuple(chr(code) for code in range(ord(self.highest), ord(self.lowest) + 1))


@dataclass(frozen=True)
class TodoConfig:
    root: Path
    storage_path: Path
    default_tags: tuple[str, ...]
    guess_enabled: bool
    todo_state_cycle: tuple[str, ...]
    done_states: tuple[str, ...]
    archive_location: str
    priorities: PriorityRange
    log_done: bool
    log_file: Path | None
