"""Read-only queries over a freshly parsed document."""

from __future__ import annotations

from orgtodo.models import Document, Entry, ItemRef, NotFoundError, Section


def list_section_names(document: Document) -> list[str]:
    return [section.name for section in document.sections]


def find_section(document: Document, name: str) -> tuple[Section, int] | None:
    """Return the first level-1 section named exactly ``name`` and its offset."""
    for section in document.sections:
        if section.name == name:
            return section, section.offset
    return None


def require_section(document: Document, name: str) -> Section:
    found = find_section(document, name)
    if found is None:
        raise NotFoundError(f"no such section: '{name}'")
    return found[0]


def list_items(document: Document, section_name: str) -> list[ItemRef]:
    """List keyword-carrying entries under ``section_name``.

    A missing section raises :class:`NotFoundError`; a section without items
    yields an empty list. Nothing is ever created here.
    """
    section = require_section(document, section_name)
    return [
        ItemRef(section=section.name, title=entry.title, offset=entry.offset)
        for entry in section.items
    ]


def find_item(
    document: Document,
    section_name: str,
    title: str,
    *,
    offset: int | None = None,
    include_plain: bool = False,
) -> Entry | None:
    """Re-resolve an item by title, preferring the entry at ``offset``.

    The offset only breaks ties between items sharing a title; it is never
    trusted on its own. With ``include_plain`` a heading without a keyword
    matches when no item does.
    """
    found = find_section(document, section_name)
    if found is None:
        return None
    candidates = [entry for entry in found[0].items if entry.title == title]
    if not candidates and include_plain:
        candidates = [
            entry for entry in found[0].children if not entry.is_item and entry.title == title
        ]
    if not candidates:
        return None
    if offset is not None:
        for entry in candidates:
            if entry.offset == offset:
                return entry
    return candidates[0]


def locate(document: Document, offset: int) -> tuple[int, int]:
    """Return the 1-based ``(line, column)`` of ``offset`` in the parsed text."""
    text = document.source_text
    if offset < 0 or offset > len(text):
        raise ValueError(f"offset {offset} is outside the document")
    line = text.count("\n", 0, offset) + 1
    column = offset - (text.rfind("\n", 0, offset) + 1) + 1
    return line, column
