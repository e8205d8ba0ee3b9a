"""Mutation engine: one read-modify-write transaction per operation.

Every public operation reloads the document, resolves its target inside that
fresh parse (an :class:`ItemRef` by section name and title, or a literal
title that is selected or inserted), applies one change, reprints, and
persists only when the text changed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Sequence, Union

from orgtodo.constants import (
    ACTION_ALIASES,
    ACTION_KINDS,
    ARCHIVE_FILE_PROPERTY,
    ARCHIVE_OLPATH_PROPERTY,
    ARCHIVE_TIME_PROPERTY,
    DONE_SEPARATOR,
    EFFORT_PROPERTY,
    SAME_FILE_ARCHIVE_HEADING,
    SAME_FILE_ARCHIVE_TAG,
    TAG_PATTERN,
)
from orgtodo.index import find_item, find_section, list_items, list_section_names, locate
from orgtodo.models import (
    ActionResult,
    Document,
    Entry,
    ItemRef,
    NotFoundError,
    Section,
    TodoConfig,
    format_effort,
    parse_effort,
)
from orgtodo.parser import parse_document, parse_headline_text, split_keyword_cycle
from orgtodo.printer import render_document
from orgtodo.resolver import ensure_section, resolve_or_create, validate_section_name
from orgtodo.storage import DocumentStore
from orgtodo.utils import _append_log, format_org_timestamp

Target = Union[ItemRef, str]
_PROPERTY_KEY_PATTERN = re.compile(r"^[^\s:]+$")


@dataclass
class _Resolved:
    document: Document
    section: Section
    entry: Entry
    inserted: bool


def parse_archive_location(location: str) -> tuple[str, str]:
    """Split an org ``FILE::HEADING`` archive location.

    Leading stars on the heading are dropped.
    """
    if "::" not in location:
        raise ValueError(f"archive location '{location}' must contain '::'")
    file_part, _, heading_part = location.partition("::")
    heading = heading_part.strip().lstrip("*").strip()
    return file_part.strip(), heading


def _normalize_tags(raw: Any) -> list[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = [part for part in re.split(r"[:,\s]+", raw) if part]
    tags: list[str] = []
    for raw_tag in raw:
        tag = str(raw_tag).strip()
        if not TAG_PATTERN.match(tag):
            raise ValueError(f"invalid tag '{raw_tag}'; tags use letters, digits, _, @, #, %")
        if tag not in tags:
            tags.append(tag)
    return tags


class TodoEngine:
    """Outline TODO-list engine bound to one document."""

    def __init__(
        self,
        config: TodoConfig,
        store: DocumentStore | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.store = store or DocumentStore(config.storage_path)
        self._clock = clock or datetime.now

    # ------------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------------

    def load(self) -> Document:
        return parse_document(self.store.read(), keywords=self.config.todo_state_cycle)

    def list_section_names(self) -> list[str]:
        return list_section_names(self.load())

    def find_section(self, name: str) -> tuple[Section, int] | None:
        return find_section(self.load(), name)

    def list_items(self, section_name: str) -> list[ItemRef]:
        return list_items(self.load(), section_name)

    def get_item(self, section_name: str, target: Target) -> Entry:
        """Return a detached view of an existing item without writing."""
        document = self.load()
        if isinstance(target, ItemRef):
            entry = find_item(
                document, target.section, target.title, offset=target.offset, include_plain=True
            )
        else:
            entry = find_item(document, section_name, str(target).strip(), include_plain=True)
        if entry is None:
            raise NotFoundError(f"no item '{_target_title(target)}' in section '{section_name}'")
        return entry

    def resolve_or_create(self, name: str) -> Section:
        return resolve_or_create(self.store, name, self.config)

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    def _cycle(self, document: Document) -> list[str]:
        cycle = document.in_buffer_cycle or self.config.todo_state_cycle
        return [keyword for keyword in cycle if keyword != DONE_SEPARATOR]

    def _done_states(self, document: Document) -> set[str]:
        if document.in_buffer_cycle:
            return set(split_keyword_cycle(document.in_buffer_cycle)[1])
        return set(self.config.done_states)

    def _validate_title(self, title: str, keyword: str, document: Document) -> str:
        candidate = str(title).strip()
        if not candidate:
            raise ValueError("item title must be non-empty")
        if "\n" in candidate or "\r" in candidate:
            raise ValueError("item title must be a single line")
        if _leading_keyword(candidate, document) is not None:
            raise ValueError(
                f"item title '{candidate}' must not start with a todo keyword"
            )
        recognised = set(document.todo_keywords) | set(document.done_keywords)
        parsed = parse_headline_text(f"{keyword} {candidate}", recognised)
        if parsed != (keyword, None, candidate, []):
            raise ValueError(
                f"item title '{candidate}' would not survive a reparse "
                "(leading priority cookie or trailing :tag: group)"
            )
        return candidate

    def _resolve(self, document: Document, section_name: str, target: Target) -> _Resolved:
        if isinstance(target, ItemRef):
            if target.section != section_name:
                raise ValueError(
                    f"item reference belongs to section '{target.section}', not '{section_name}'"
                )
            found = find_section(document, section_name)
            if found is None:
                raise NotFoundError(f"no such section: '{section_name}'")
            entry = find_item(
                document, section_name, target.title, offset=target.offset, include_plain=True
            )
            if entry is None:
                raise NotFoundError(
                    f"item '{target.title}' no longer exists in section '{section_name}'"
                )
            return _Resolved(document=document, section=found[0], entry=entry, inserted=False)

        section, _created = ensure_section(document, section_name, self.config.default_tags)
        title = str(target).strip()
        entry = find_item(document, section.name, title, include_plain=True)
        if entry is not None:
            return _Resolved(document=document, section=section, entry=entry, inserted=False)
        keyword = self._cycle(document)[0]
        title = self._validate_title(title, keyword, document)
        entry = Entry(title=title, keyword=keyword)
        section.children.append(entry)
        return _Resolved(document=document, section=section, entry=entry, inserted=True)

    def _transaction(
        self,
        action: str,
        section_name: str,
        target: Target,
        mutate: Callable[[_Resolved], str],
    ) -> ActionResult:
        section_name = validate_section_name(section_name)
        original = self.store.read()
        document = parse_document(original, keywords=self.config.todo_state_cycle)
        resolved = self._resolve(document, section_name, target)
        message = mutate(resolved)
        if resolved.inserted:
            message = f"inserted '{resolved.entry.title}' into '{resolved.section.name}'; {message}"

        rendered = render_document(document)
        changed = rendered != original
        if changed:
            self.store.write(rendered)
            _append_log(self.config.log_file, f"{action} {self.store.path}: {message}")
        return self._result(action, rendered, document, resolved, changed, message, self.store.path)

    def _result(
        self,
        action: str,
        rendered: str,
        document: Document,
        resolved: _Resolved,
        changed: bool,
        message: str,
        path: Path,
    ) -> ActionResult:
        entry = resolved.entry
        offset, line, section_name = -1, 0, resolved.section.name
        for section_index, section in enumerate(document.sections):
            if entry in section.children:
                child_index = section.children.index(entry)
                reparsed = parse_document(rendered, keywords=self.config.todo_state_cycle)
                placed = reparsed.sections[section_index].children[child_index]
                offset, section_name = placed.offset, section.name
                line, _column = locate(reparsed, offset)
                break
        return ActionResult(
            action=action,
            section=section_name,
            title=entry.title,
            keyword=entry.keyword,
            offset=offset,
            line=line,
            path=path,
            changed=changed,
            message=message,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def insert(self, section_name: str, target: Target) -> ActionResult:
        """Select ``target`` or append it as a new item of ``section_name``."""

        def _mutate(resolved: _Resolved) -> str:
            if resolved.inserted:
                return f"state {resolved.entry.keyword}"
            return f"selected existing item '{resolved.entry.title}'"

        return self._transaction("insert", section_name, target, _mutate)

    def visit(self, section_name: str, target: Target) -> ActionResult:
        def _mutate(resolved: _Resolved) -> str:
            return f"visiting '{resolved.entry.title}' in '{resolved.section.name}'"

        return self._transaction("visit", section_name, target, _mutate)

    def _apply_state(self, resolved: _Resolved, keyword: str | None) -> str:
        entry = resolved.entry
        previous = entry.keyword
        if previous == keyword:
            return f"'{entry.title}' already {keyword or 'without state'}"
        if keyword is None and entry.priority is None:
            leading = _leading_keyword(entry.title, resolved.document)
            if leading is not None:
                raise ValueError(
                    f"cannot clear the state of '{entry.title}': the headline would "
                    f"reparse as a {leading} item"
                )
        entry.keyword = keyword
        entry.touch()
        if self.config.log_done:
            done_states = self._done_states(resolved.document)
            if keyword in done_states and previous not in done_states:
                entry.set_closed(format_org_timestamp(self._clock()))
            elif keyword not in done_states and previous in done_states:
                entry.set_closed(None)
        return f"'{entry.title}' {previous or 'none'} -> {keyword or 'none'}"

    def toggle(self, section_name: str, target: Target) -> ActionResult:
        """Advance the item along the state cycle; the last state wraps to none."""

        def _mutate(resolved: _Resolved) -> str:
            cycle = self._cycle(resolved.document)
            current = resolved.entry.keyword
            if current is None or current not in cycle:
                following: str | None = cycle[0]
            else:
                position = cycle.index(current)
                following = cycle[position + 1] if position + 1 < len(cycle) else None
            return self._apply_state(resolved, following)

        return self._transaction("toggle", section_name, target, _mutate)

    def set_state(self, section_name: str, target: Target, keyword: str | None) -> ActionResult:
        def _mutate(resolved: _Resolved) -> str:
            cycle = self._cycle(resolved.document)
            wanted = str(keyword).strip() if keyword else None
            if wanted is not None and wanted not in cycle:
                raise ValueError(f"state '{wanted}' is not one of {cycle}")
            return self._apply_state(resolved, wanted)

        return self._transaction("setState", section_name, target, _mutate)

    def set_priority(
        self, section_name: str, target: Target, priority: str | None
    ) -> ActionResult:
        wanted = str(priority).strip().upper() if priority else None
        allowed = self.config.priorities.allowed()
        if wanted is not None and wanted not in allowed:
            raise ValueError(f"priority '{wanted}' must be one of {', '.join(allowed)}")

        def _mutate(resolved: _Resolved) -> str:
            entry = resolved.entry
            if entry.priority == wanted:
                return f"'{entry.title}' priority unchanged"
            entry.priority = wanted
            entry.touch()
            return f"'{entry.title}' priority {wanted or 'cleared'}"

        return self._transaction("setPriority", section_name, target, _mutate)

    def set_tags(self, section_name: str, target: Target, tags: Iterable[str] | str | None) -> ActionResult:
        wanted = _normalize_tags(tags)

        def _mutate(resolved: _Resolved) -> str:
            entry = resolved.entry
            if entry.tags == wanted:
                return f"'{entry.title}' tags unchanged"
            entry.tags = list(wanted)
            entry.touch()
            return f"'{entry.title}' tags {':'.join(wanted) or 'cleared'}"

        return self._transaction("setTags", section_name, target, _mutate)

    def set_effort(self, section_name: str, target: Target, effort: Any) -> ActionResult:
        if effort is None or (isinstance(effort, str) and not effort.strip()):
            formatted = None
        else:
            formatted = format_effort(parse_effort(effort))

        def _mutate(resolved: _Resolved) -> str:
            entry = resolved.entry
            entry.set_property(EFFORT_PROPERTY, formatted)
            return f"'{entry.title}' effort {formatted or 'cleared'}"

        return self._transaction("setEffort", section_name, target, _mutate)

    def set_property(
        self, section_name: str, target: Target, key: str, value: str | None
    ) -> ActionResult:
        name = str(key).strip()
        if not _PROPERTY_KEY_PATTERN.match(name) or name.upper() in {"PROPERTIES", "END"}:
            raise ValueError(f"invalid property name '{key}'")
        text = None if value is None else str(value).strip()
        if text is not None and ("\n" in text or "\r" in text):
            raise ValueError("property values must be a single line")

        def _mutate(resolved: _Resolved) -> str:
            entry = resolved.entry
            entry.set_property(name, text)
            if text is None:
                return f"'{entry.title}' property {name} removed"
            return f"'{entry.title}' property {name}={text}"

        return self._transaction("setProperty", section_name, target, _mutate)

    def refile(self, section_name: str, target: Target, destination: str) -> ActionResult:
        """Move the item subtree to ``destination``, creating that section if needed."""
        destination = validate_section_name(destination)
        if destination == section_name.strip():
            raise ValueError("refile destination must differ from the source section")

        def _mutate(resolved: _Resolved) -> str:
            entry = resolved.entry
            resolved.section.children.remove(entry)
            target_section, _created = ensure_section(
                resolved.document, destination, self.config.default_tags
            )
            target_section.children.append(entry)
            return f"refiled '{entry.title}' from '{resolved.section.name}' to '{destination}'"

        return self._transaction("refile", section_name, target, _mutate)

    def archive_path(self) -> Path | None:
        """Return the sibling archive file, or ``None`` when archiving in place."""
        file_part, _heading = parse_archive_location(self.config.archive_location)
        if not file_part:
            return None
        source = self.store.path
        expanded = Path(file_part.replace("%s", source.name)).expanduser()
        if not expanded.is_absolute():
            expanded = source.parent / expanded
        if expanded.resolve() == source.resolve():
            return None
        return expanded

    def archive(self, section_name: str, target: Target) -> ActionResult:
        """Detach the item and append it to the configured archive location.

        A sibling archive file is written before the source document, so a
        failure can duplicate an item but never lose it.
        """
        _file_part, heading = parse_archive_location(self.config.archive_location)
        archive_path = self.archive_path()
        archive_store = DocumentStore(archive_path) if archive_path is not None else None
        section_name = validate_section_name(section_name)

        original = self.store.read()
        document = parse_document(original, keywords=self.config.todo_state_cycle)
        resolved = self._resolve(document, section_name, target)
        entry = resolved.entry
        resolved.section.children.remove(entry)

        stamp = format_org_timestamp(self._clock())[1:-1]
        entry.set_property(ARCHIVE_TIME_PROPERTY, stamp)
        entry.set_property(ARCHIVE_FILE_PROPERTY, str(self.store.path))
        entry.set_property(ARCHIVE_OLPATH_PROPERTY, resolved.section.name)

        if archive_store is None:
            destination_name = heading or SAME_FILE_ARCHIVE_HEADING
            destination_doc = document
            tags: Sequence[str] = () if heading else (SAME_FILE_ARCHIVE_TAG,)
        else:
            destination_name = heading or resolved.section.name
            archive_original = archive_store.read()
            destination_doc = parse_document(
                archive_original, keywords=self.config.todo_state_cycle
            )
            tags = ()
        destination, _created = ensure_section(destination_doc, destination_name, tags)
        destination.children.append(entry)

        message = (
            f"archived '{entry.title}' from '{resolved.section.name}' to "
            f"'{destination_name}' in {archive_path or self.store.path}"
        )
        if resolved.inserted:
            message = f"inserted '{entry.title}' into '{resolved.section.name}'; {message}"

        if archive_store is not None:
            archive_rendered = render_document(destination_doc)
            archive_store.write(archive_rendered)
        rendered = render_document(document)
        changed = rendered != original
        if changed:
            self.store.write(rendered)
        if changed or archive_store is not None:
            _append_log(self.config.log_file, f"archive {self.store.path}: {message}")

        if archive_store is not None:
            resolved_in_archive = _Resolved(
                document=destination_doc, section=destination, entry=entry, inserted=False
            )
            return self._result(
                "archive", archive_rendered, destination_doc, resolved_in_archive, True,
                message, archive_store.path,
            )
        return self._result("archive", rendered, document, resolved, changed, message, self.store.path)

    # ------------------------------------------------------------------
    # Command surface dispatch
    # ------------------------------------------------------------------

    def apply(
        self, action: str, section_name: str, target: Target, value: Any = None
    ) -> ActionResult:
        """Dispatch ``action`` (one of :data:`ACTION_KINDS`) against ``target``.

        ``setProperty`` takes ``(key, value)`` or a one-entry mapping;
        ``refile`` takes the destination section name.
        """
        kind = ACTION_ALIASES.get(action, action)
        if kind not in ACTION_KINDS and kind != "setState":
            raise ValueError(f"unknown action '{action}'; expected one of {', '.join(ACTION_KINDS)}")
        if kind == "toggle":
            return self.toggle(section_name, target)
        if kind == "archive":
            return self.archive(section_name, target)
        if kind == "setPriority":
            return self.set_priority(section_name, target, value)
        if kind == "setTags":
            return self.set_tags(section_name, target, value)
        if kind == "setEffort":
            return self.set_effort(section_name, target, value)
        if kind == "setState":
            return self.set_state(section_name, target, value)
        if kind == "setProperty":
            if isinstance(value, Mapping) and len(value) == 1:
                key, prop_value = next(iter(value.items()))
            elif isinstance(value, (list, tuple)) and len(value) == 2:
                key, prop_value = value
            else:
                raise ValueError("setProperty expects a (key, value) pair")
            return self.set_property(section_name, target, key, prop_value)
        if kind == "refile":
            if not value:
                raise ValueError("refile requires a destination section name")
            return self.refile(section_name, target, str(value))
        if kind == "visit":
            return self.visit(section_name, target)
        return self.insert(section_name, target)


def _target_title(target: Target) -> str:
    return target.title if isinstance(target, ItemRef) else str(target).strip()


def _leading_keyword(title: str, document: Document) -> str | None:
    first = re.split(r"[ \t]+", title.strip(), maxsplit=1)[0]
    if first in set(document.todo_keywords) | set(document.done_keywords):
        return first
    return None
