"""Outline document printer, the inverse of :mod:`orgtodo.parser`."""

from __future__ import annotations

from orgtodo.models import Document, Entry, Section


def format_tags(tags: list[str]) -> str:
    if not tags:
        return ""
    return ":" + ":".join(tags) + ":"


def format_section_headline(section: Section) -> str:
    parts = [section.stars or "*"]
    if section.name:
        parts.append(section.name)
    if section.tags:
        parts.append(format_tags(section.tags))
    return " ".join(parts) + "\n"


def format_entry_headline(entry: Entry) -> str:
    parts = [entry.stars or "**"]
    if entry.keyword:
        parts.append(entry.keyword)
    if entry.priority:
        parts.append(f"[#{entry.priority}]")
    if entry.title:
        parts.append(entry.title)
    if entry.tags:
        parts.append(format_tags(entry.tags))
    return " ".join(parts) + "\n"


class _Buffer:
    def __init__(self) -> None:
        self._chunks: list[str] = []

    def emit(self, text: str) -> None:
        if not text:
            return
        # every chunk starts on its own line
        if self._chunks and not self._chunks[-1].endswith("\n"):
            self._chunks.append("\n")
        self._chunks.append(text)

    def emit_lines(self, lines: list[str]) -> None:
        for line in lines:
            self.emit(line)

    def text(self) -> str:
        return "".join(self._chunks)


def render_entry(entry: Entry) -> str:
    buffer = _Buffer()
    buffer.emit(entry.raw_headline if entry.raw_headline is not None else format_entry_headline(entry))
    buffer.emit_lines(entry.body)
    return buffer.text()


def render_document(document: Document) -> str:
    """Serialise ``document`` back to outline text.

    Unmodified nodes are emitted from their raw source lines; nodes whose
    headline was touched or that were created in memory are synthesised.
    """
    buffer = _Buffer()
    buffer.emit_lines(document.preamble)
    for section in document.sections:
        if section.raw_headline is not None:
            buffer.emit(section.raw_headline)
        else:
            buffer.emit(format_section_headline(section))
        buffer.emit_lines(section.body)
        for entry in section.children:
            buffer.emit(render_entry(entry))
    return buffer.text()
