"""Find-or-create resolution of named sections."""

from __future__ import annotations

from typing import Iterable

from orgtodo.index import find_section
from orgtodo.models import Document, Section, StorageError, TodoConfig
from orgtodo.parser import parse_document, split_tags
from orgtodo.printer import render_document
from orgtodo.storage import DocumentStore
from orgtodo.utils import _append_log


def validate_section_name(name: str) -> str:
    candidate = str(name).strip()
    if not candidate:
        raise ValueError("section name must be non-empty")
    if "\n" in candidate or "\r" in candidate:
        raise ValueError("section name must be a single line")
    if split_tags(candidate) != (candidate, []):
        raise ValueError(f"section name '{candidate}' must not end with a :tag: group")
    return candidate


def ensure_section(
    document: Document, name: str, tags: Iterable[str] = ()
) -> tuple[Section, bool]:
    """Return the section named ``name``, appending it in memory if absent.

    The boolean is True when a section was created.
    """
    found = find_section(document, name)
    if found is not None:
        return found[0], False
    section = Section(name=name, tags=list(tags))
    document.sections.append(section)
    return section, True


def resolve_or_create(store: DocumentStore, name: str, config: TodoConfig) -> Section:
    """Return the section ``name`` from a fresh parse, creating it if needed.

    A hit performs no write. A miss appends an empty section carrying
    ``config.default_tags``, persists the document, and re-reads it exactly
    once so the returned section carries offsets from the persisted text.
    """
    name = validate_section_name(name)
    document = parse_document(store.read(), keywords=config.todo_state_cycle)
    found = find_section(document, name)
    if found is not None:
        return found[0]

    ensure_section(document, name, config.default_tags)
    store.write(render_document(document))
    _append_log(config.log_file, f"created section '{name}' in {store.path}")

    document = parse_document(store.read(), keywords=config.todo_state_cycle)
    found = find_section(document, name)
    if found is None:
        raise StorageError(
            f"section '{name}' was written to {store.path} but is missing on reload",
            path=store.path,
        )
    return found[0]
