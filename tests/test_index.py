from __future__ import annotations

import pytest

from orgtodo.index import find_item, find_section, list_items, list_section_names, locate
from orgtodo.models import ItemRef, NotFoundError
from orgtodo.parser import parse_document

TEXT = (
    "* Home\n"
    "** TODO Buy milk\n"
    "** Notes\n"
    "* Empty\n"
    "* Work\n"
    "** TODO dup\n"
    "** TODO dup\n"
)


def test_list_section_names_in_document_order() -> None:
    assert list_section_names(parse_document(TEXT)) == ["Home", "Empty", "Work"]


def test_find_section_returns_section_and_offset() -> None:
    document = parse_document(TEXT)
    found = find_section(document, "Work")
    assert found is not None
    section, offset = found
    assert section.name == "Work"
    assert offset == TEXT.index("* Work")
    assert find_section(document, "work") is None


def test_list_items_skips_plain_headings() -> None:
    refs = list_items(parse_document(TEXT), "Home")
    assert refs == [ItemRef(section="Home", title="Buy milk", offset=TEXT.index("** TODO Buy"))]


def test_list_items_distinguishes_empty_and_missing_sections() -> None:
    document = parse_document(TEXT)
    assert list_items(document, "Empty") == []
    with pytest.raises(NotFoundError):
        list_items(document, "NoSuchList")
    assert "NoSuchList" not in list_section_names(document)


def test_find_item_uses_offset_only_to_break_ties() -> None:
    document = parse_document(TEXT)
    second_offset = TEXT.rindex("** TODO dup")

    assert find_item(document, "Work", "dup", offset=second_offset).offset == second_offset
    assert find_item(document, "Work", "dup", offset=12345).offset == TEXT.index("** TODO dup")
    assert find_item(document, "Home", "Notes") is None
    assert find_item(document, "Home", "Notes", include_plain=True).title == "Notes"


def test_locate_reports_line_and_column() -> None:
    document = parse_document(TEXT)
    assert locate(document, TEXT.index("* Work")) == (5, 1)
    assert locate(document, 0) == (1, 1)
    with pytest.raises(ValueError):
        locate(document, len(TEXT) + 1)
