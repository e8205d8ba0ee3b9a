"""Outline document parser.

Turns org-style outline text into a :class:`~orgtodo.models.Document`.
Every input line is kept verbatim on the node that owns it, so the printer
can reproduce untouched regions byte for byte.
"""

from __future__ import annotations

import re
from typing import Iterable, Sequence

from orgtodo.constants import (
    DEFAULT_TODO_STATE_CYCLE,
    DONE_SEPARATOR,
    IN_BUFFER_TODO_DIRECTIVES,
)
from orgtodo.models import Document, Entry, ParseError, Section, _strip_ending

_HEADLINE_PATTERN = re.compile(r"^(\*+)(?:[ \t]+(.*))?$")
_TAGS_PATTERN = re.compile(r"(?:^|[ \t]+):((?:[\w@#%]+:)+)[ \t]*$")
_PRIORITY_PATTERN = re.compile(r"^\[#([A-Za-z0-9])\](?:[ \t]+|$)")
_DRAWER_OPEN_PATTERN = re.compile(r"^[ \t]*:([\w-]+):[ \t]*$")
_DRAWER_END_PATTERN = re.compile(r"^[ \t]*:END:[ \t]*$", re.IGNORECASE)
_BLOCK_BEGIN_PATTERN = re.compile(r"^[ \t]*#\+BEGIN_(\S+)", re.IGNORECASE)
_BLOCK_END_PATTERN = re.compile(r"^[ \t]*#\+END_(\S+)", re.IGNORECASE)
_FAST_ACCESS_PATTERN = re.compile(r"\(.*\)$")


def split_lines(text: str) -> list[str]:
    """Split on ``\\n`` only, keeping terminators so ``"".join`` is lossless."""
    if not text:
        return []
    parts = text.split("\n")
    lines = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def split_keyword_cycle(cycle: Sequence[str]) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """Return ``(todo_states, done_states)`` for a keyword cycle.

    Without an explicit ``|`` the last keyword is the only done state; a
    single keyword is treated as an open state.
    """
    keywords = [str(keyword) for keyword in cycle]
    if DONE_SEPARATOR in keywords:
        split_at = keywords.index(DONE_SEPARATOR)
        return tuple(keywords[:split_at]), tuple(keywords[split_at + 1 :])
    if len(keywords) <= 1:
        return tuple(keywords), ()
    return tuple(keywords[:-1]), (keywords[-1],)


def _in_buffer_cycles(lines: Iterable[str]) -> list[tuple[str, ...]]:
    cycles: list[tuple[str, ...]] = []
    for raw_line in lines:
        stripped = _strip_ending(raw_line).strip()
        upper = stripped.upper()
        for directive in IN_BUFFER_TODO_DIRECTIVES:
            if not upper.startswith(directive):
                continue
            tokens = []
            for token in stripped[len(directive) :].split():
                cleaned = _FAST_ACCESS_PATTERN.sub("", token)
                if cleaned:
                    tokens.append(cleaned)
            if any(token != DONE_SEPARATOR for token in tokens):
                cycles.append(tuple(tokens))
            break
    return cycles


def split_tags(text: str) -> tuple[str, list[str]]:
    """Split a trailing ``:a:b:`` tag group off headline text."""
    remainder = text.strip()
    tag_match = _TAGS_PATTERN.search(remainder)
    if not tag_match:
        return remainder, []
    tags = [tag for tag in tag_match.group(1).split(":") if tag]
    return remainder[: tag_match.start()].rstrip(), tags


def parse_headline_text(
    text: str, keywords: Iterable[str]
) -> tuple[str | None, str | None, str, list[str]]:
    """Split headline text into ``(keyword, priority, title, tags)``."""
    remainder, tags = split_tags(text)

    keyword: str | None = None
    parts = re.split(r"[ \t]+", remainder, maxsplit=1)
    if parts[0] and parts[0] in set(keywords):
        keyword = parts[0]
        remainder = parts[1] if len(parts) > 1 else ""

    priority: str | None = None
    priority_match = _PRIORITY_PATTERN.match(remainder)
    if priority_match:
        priority = priority_match.group(1)
        remainder = remainder[priority_match.end() :]

    return keyword, priority, remainder.strip(), tags


def parse_document(
    text: str | None, *, keywords: Sequence[str] = DEFAULT_TODO_STATE_CYCLE
) -> Document:
    """Parse outline text into a document tree.

    ``None`` or empty text gives an empty document. ``keywords`` is the
    configured state cycle; ``#+TODO:`` style declarations in the text extend
    it. Raises :class:`ParseError` for unclosed drawers or blocks.
    """
    source = text or ""
    lines = split_lines(source)

    todo_states, done_states = split_keyword_cycle(keywords)
    in_buffer = _in_buffer_cycles(lines)
    for cycle in in_buffer:
        extra_todo, extra_done = split_keyword_cycle(cycle)
        todo_states += tuple(k for k in extra_todo if k not in todo_states)
        done_states += tuple(k for k in extra_done if k not in done_states)
    recognised = set(todo_states) | set(done_states)

    document = Document(
        todo_keywords=todo_states,
        done_keywords=done_states,
        in_buffer_cycle=in_buffer[0] if in_buffer else (),
        source_text=source,
    )
    section: Section | None = None
    entry: Entry | None = None
    open_drawer: tuple[str, int] | None = None
    open_block: tuple[str, int] | None = None
    offset = 0

    for line_number, raw_line in enumerate(lines, start=1):
        content = _strip_ending(raw_line)
        headline = _HEADLINE_PATTERN.match(content)
        level = len(headline.group(1)) if headline else 0

        if headline and (level == 1 or (level == 2 and section is not None)):
            if open_drawer is not None:
                raise ParseError(
                    f"drawer :{open_drawer[0]}: opened on line {open_drawer[1]} is not closed by :END:",
                    line=line_number,
                )
            if open_block is not None:
                raise ParseError(
                    f"block #+BEGIN_{open_block[0]} opened on line {open_block[1]} is not closed",
                    line=line_number,
                )
            if level == 1:
                name, tags = split_tags(headline.group(2) or "")
                section = Section(
                    name=name,
                    tags=tags,
                    stars=headline.group(1),
                    offset=offset,
                    line=line_number,
                    raw_headline=raw_line,
                )
                document.sections.append(section)
                entry = None
            else:
                keyword, priority, title, tags = parse_headline_text(
                    headline.group(2) or "", recognised
                )
                entry = Entry(
                    title=title,
                    keyword=keyword,
                    priority=priority,
                    tags=tags,
                    stars=headline.group(1),
                    offset=offset,
                    line=line_number,
                    raw_headline=raw_line,
                )
                assert section is not None
                section.children.append(entry)
            offset += len(raw_line)
            continue

        if open_block is not None:
            end_match = _BLOCK_END_PATTERN.match(content)
            if end_match and end_match.group(1).lower() == open_block[0].lower():
                open_block = None
        elif open_drawer is not None:
            if _DRAWER_END_PATTERN.match(content):
                open_drawer = None
        elif _DRAWER_END_PATTERN.match(content):
            raise ParseError(":END: without a matching drawer opening", line=line_number)
        elif _DRAWER_OPEN_PATTERN.match(content):
            open_drawer = (_DRAWER_OPEN_PATTERN.match(content).group(1), line_number)
        elif _BLOCK_BEGIN_PATTERN.match(content):
            open_block = (_BLOCK_BEGIN_PATTERN.match(content).group(1), line_number)

        if entry is not None:
            entry.body.append(raw_line)
        elif section is not None:
            section.body.append(raw_line)
        else:
            document.preamble.append(raw_line)
        offset += len(raw_line)

    end_line = len(lines)
    if open_drawer is not None:
        raise ParseError(
            f"drawer :{open_drawer[0]}: opened on line {open_drawer[1]} is not closed by :END:",
            line=end_line,
        )
    if open_block is not None:
        raise ParseError(
            f"block #+BEGIN_{open_block[0]} opened on line {open_block[1]} is not closed",
            line=end_line,
        )
    return document
