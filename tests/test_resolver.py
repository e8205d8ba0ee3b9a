from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from orgtodo.config import load_config
from orgtodo.engine import TodoEngine
from orgtodo.models import StorageError
from orgtodo.resolver import ensure_section, resolve_or_create, validate_section_name
from orgtodo.parser import parse_document
from orgtodo.storage import DocumentStore


class _CountingStore(DocumentStore):
    def __init__(self, path: Path) -> None:
        super().__init__(path)
        self.reads = 0
        self.writes = 0

    def read(self) -> str:
        self.reads += 1
        return super().read()

    def write(self, text: str) -> None:
        self.writes += 1
        super().write(text)


class _DroppingStore(_CountingStore):
    """Accepts writes but never persists them."""

    def write(self, text: str) -> None:
        self.writes += 1


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _config(tmp_path: Path, **policy: object):
    repo = tmp_path / "repo"
    repo.mkdir(exist_ok=True)
    if policy:
        _write(repo / ".orgtodo" / "config.yaml", yaml.safe_dump(policy, sort_keys=False))
    return load_config(repo)


def test_existing_section_is_returned_without_writing(tmp_path: Path) -> None:
    config = _config(tmp_path)
    _write(config.storage_path, "* Home\n* Work\n")
    store = _CountingStore(config.storage_path)

    section = resolve_or_create(store, "Work", config)

    assert section.name == "Work"
    assert section.offset == len("* Home\n")
    assert (store.reads, store.writes) == (1, 0)


def test_missing_section_is_created_once_with_default_tags(tmp_path: Path) -> None:
    config = _config(tmp_path, default_tags=["project"])
    _write(config.storage_path, "* Home\n")
    store = _CountingStore(config.storage_path)

    section = resolve_or_create(store, "orgtodo", config)

    assert section.name == "orgtodo"
    assert section.tags == ["project"]
    assert section.line == 2
    assert config.storage_path.read_text(encoding="utf-8") == "* Home\n* orgtodo :project:\n"
    assert (store.reads, store.writes) == (2, 1)

    again = resolve_or_create(store, "orgtodo", config)
    assert again.offset == section.offset
    assert store.writes == 1
    assert "created section 'orgtodo'" in config.log_file.read_text(encoding="utf-8")


def test_section_missing_after_reload_raises_storage_error(tmp_path: Path) -> None:
    config = _config(tmp_path)
    store = _DroppingStore(config.storage_path)

    with pytest.raises(StorageError):
        resolve_or_create(store, "Home", config)
    assert (store.reads, store.writes) == (2, 1)


def test_validate_section_name() -> None:
    assert validate_section_name("  Home  ") == "Home"
    for bad in ("", "   ", "two\nlines", "Home :tag:"):
        with pytest.raises(ValueError):
            validate_section_name(bad)


def test_ensure_section_returns_first_duplicate() -> None:
    document = parse_document("* Home\n** TODO a\n* Home\n")
    section, created = ensure_section(document, "Home")
    assert created is False
    assert section is document.sections[0]


def test_repeated_resolution_interleaved_with_mutations_keeps_one_section(tmp_path: Path) -> None:
    config = _config(tmp_path)
    _write(config.storage_path, "* Home\n** TODO Buy milk\n")
    engine = TodoEngine(config)

    for index in range(3):
        resolve_or_create(engine.store, "orgtodo", config)
        engine.insert("Home", f"chore {index}")
        engine.toggle("Home", "Buy milk")
        engine.insert("orgtodo", f"task {index}")
        resolve_or_create(engine.store, "orgtodo", config)

    names = engine.list_section_names()
    assert names.count("orgtodo") == 1
    assert names.count("Home") == 1
    assert [ref.title for ref in engine.list_items("orgtodo")] == ["task 0", "task 1", "task 2"]
