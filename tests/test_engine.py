from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest
import yaml

from orgtodo.config import load_config
from orgtodo.engine import TodoEngine
from orgtodo.models import ItemRef, NotFoundError
from orgtodo.parser import parse_document

FIXED_NOW = datetime(2026, 10, 18, 9, 30)

SAMPLE = (
    "#+TITLE: Lists\n"
    "\n"
    "* Home :home:\n"
    "Some notes about home.\n"
    "** TODO [#A] Buy milk :errand:urgent:\n"
    ":PROPERTIES:\n"
    ":Effort:   0:30\n"
    ":END:\n"
    "Body text.\n"
    "*** sub heading kept verbatim\n"
    "** Plain heading\n"
    "** DONE Fix sink\n"
    "* Work\n"
    "** TODO Ship release                                         :work:\n"
)


def _write(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _engine(tmp_path: Path, text: str | None = None, **policy: object) -> TodoEngine:
    repo = tmp_path / "repo"
    repo.mkdir(exist_ok=True)
    if policy:
        _write(repo / ".orgtodo" / "config.yaml", yaml.safe_dump(policy, sort_keys=False))
    if text is not None:
        _write(repo / "todo.org", text)
    return TodoEngine(load_config(repo), clock=lambda: FIXED_NOW)


def _read(engine: TodoEngine) -> str:
    return engine.store.path.read_text(encoding="utf-8")


def test_insert_into_empty_store_creates_section_and_item(tmp_path: Path) -> None:
    engine = _engine(tmp_path)

    result = engine.insert("Home", "Buy milk")

    assert _read(engine) == "* Home\n** TODO Buy milk\n"
    assert result.changed is True
    assert result.keyword == "TODO"
    assert result.line == 2
    assert result.offset == len("* Home\n")
    assert [ref.title for ref in engine.list_items("Home")] == ["Buy milk"]


def test_insert_existing_title_selects_without_writing(tmp_path: Path) -> None:
    engine = _engine(tmp_path, SAMPLE)
    before = engine.store.path.stat().st_mtime_ns

    result = engine.insert("Home", "Buy milk")

    assert result.changed is False
    assert result.line == 5
    assert _read(engine) == SAMPLE
    assert engine.store.path.stat().st_mtime_ns == before


def test_insert_appends_after_last_child_and_keeps_other_bytes(tmp_path: Path) -> None:
    engine = _engine(tmp_path, SAMPLE)

    engine.insert("Home", "Buy bread")

    expected = SAMPLE.replace("* Work\n", "** TODO Buy bread\n* Work\n")
    assert _read(engine) == expected


def test_insert_rejects_titles_that_would_not_reparse(tmp_path: Path) -> None:
    engine = _engine(tmp_path, "* Home\n")
    for title in ("", "Buy milk :errand:", "[#A] Buy milk", "two\nlines"):
        with pytest.raises(ValueError):
            engine.insert("Home", title)
    assert _read(engine) == "* Home\n"


def test_default_cycle_toggles_todo_done_none_todo(tmp_path: Path) -> None:
    engine = _engine(tmp_path, "* Work\n** TODO Ship release\n")

    states = [engine.toggle("Work", "Ship release").keyword for _ in range(3)]

    assert states == ["DONE", None, "TODO"]
    assert _read(engine) == "* Work\n** TODO Ship release\n"


def test_toggle_to_none_keeps_heading_resolvable_by_title(tmp_path: Path) -> None:
    engine = _engine(tmp_path, SAMPLE)

    result = engine.toggle("Home", "Fix sink")

    assert result.keyword is None
    assert "** Fix sink\n" in _read(engine)
    assert [ref.title for ref in engine.list_items("Home")] == ["Buy milk"]
    assert engine.get_item("Home", "Fix sink").keyword is None


def test_custom_cycle_from_config(tmp_path: Path) -> None:
    engine = _engine(
        tmp_path,
        "* Work\n** TODO Ship release\n",
        todo_state_cycle=["TODO", "NEXT", "|", "DONE", "CANCELLED"],
    )

    states = [engine.toggle("Work", "Ship release").keyword for _ in range(4)]

    assert states == ["NEXT", "DONE", "CANCELLED", None]


def test_in_buffer_cycle_overrides_config_cycle(tmp_path: Path) -> None:
    text = "#+TODO: TODO WAIT | DONE\n* Work\n** TODO Ship release\n"
    engine = _engine(tmp_path, text)

    assert engine.toggle("Work", "Ship release").keyword == "WAIT"
    assert engine.insert("Work", "New thing").keyword == "TODO"


def test_set_priority_rewrites_only_the_headline(tmp_path: Path) -> None:
    engine = _engine(tmp_path, SAMPLE)

    engine.set_priority("Work", "Ship release", "b")

    lines = _read(engine).splitlines(keepends=True)
    original = SAMPLE.splitlines(keepends=True)
    assert lines[:-1] == original[:-1]
    assert lines[-1] == "** TODO [#B] Ship release :work:\n"


def test_set_priority_outside_configured_range_is_rejected(tmp_path: Path) -> None:
    engine = _engine(tmp_path, SAMPLE, priorities={"highest": "A", "lowest": "B"})
    with pytest.raises(ValueError):
        engine.set_priority("Work", "Ship release", "C")
    assert _read(engine) == SAMPLE


def test_set_tags_and_effort_compose_on_one_item(tmp_path: Path) -> None:
    engine = _engine(tmp_path, "* Work\n** TODO Ship release\nnotes\n")

    engine.set_priority("Work", "Ship release", "A")
    engine.set_tags("Work", "Ship release", ["work", "urgent"])
    engine.set_effort("Work", "Ship release", "1h30m")

    assert _read(engine) == (
        "* Work\n"
        "** TODO [#A] Ship release :work:urgent:\n"
        ":PROPERTIES:\n"
        ":Effort: 1:30\n"
        ":END:\n"
        "notes\n"
    )
    item = engine.get_item("Work", "Ship release")
    assert (item.priority, item.tags, item.effort) == ("A", ["work", "urgent"], 90)


def test_set_effort_replaces_existing_property_in_place(tmp_path: Path) -> None:
    engine = _engine(tmp_path, SAMPLE)

    engine.set_effort("Home", "Buy milk", "45")

    expected = SAMPLE.replace(":Effort:   0:30\n", ":Effort: 0:45\n")
    assert _read(engine) == expected


def test_set_effort_rejects_unparseable_values(tmp_path: Path) -> None:
    engine = _engine(tmp_path, SAMPLE)
    with pytest.raises(ValueError):
        engine.set_effort("Home", "Buy milk", "soon")


def test_set_property_after_planning_line_and_delete_restores_text(tmp_path: Path) -> None:
    text = "* Work\n** TODO Ship release\nSCHEDULED: <2026-10-20 Tue>\nnotes\n"
    engine = _engine(tmp_path, text)

    engine.set_property("Work", "Ship release", "owner", "alice")
    assert _read(engine) == (
        "* Work\n"
        "** TODO Ship release\n"
        "SCHEDULED: <2026-10-20 Tue>\n"
        ":PROPERTIES:\n"
        ":owner: alice\n"
        ":END:\n"
        "notes\n"
    )

    engine.set_property("Work", "Ship release", "owner", None)
    assert _read(engine) == text


def test_item_ref_survives_offset_shift(tmp_path: Path) -> None:
    engine = _engine(tmp_path, "* Home\n** TODO a\n* Work\n** TODO Ship release\n")
    ref = engine.list_items("Work")[0]

    engine.insert("Home", "b")
    result = engine.toggle("Work", ref)

    assert result.title == "Ship release"
    assert result.keyword == "DONE"
    assert result.offset != ref.offset


def test_item_ref_offset_breaks_ties_between_duplicate_titles(tmp_path: Path) -> None:
    engine = _engine(tmp_path, "* Work\n** TODO dup\n** TODO dup\n")
    refs = engine.list_items("Work")

    engine.set_priority("Work", refs[1], "A")

    assert _read(engine) == "* Work\n** TODO dup\n** TODO [#A] dup\n"


def test_item_ref_to_deleted_item_raises_not_found(tmp_path: Path) -> None:
    engine = _engine(tmp_path, "* Work\n** TODO Ship release\n")
    ref = engine.list_items("Work")[0]
    _write(engine.store.path, "* Work\n")

    with pytest.raises(NotFoundError):
        engine.toggle("Work", ref)
    with pytest.raises(NotFoundError):
        engine.toggle("Elsewhere", ItemRef(section="Elsewhere", title="x"))
    assert _read(engine) == "* Work\n"


def test_item_ref_must_match_section_argument(tmp_path: Path) -> None:
    engine = _engine(tmp_path, "* Work\n** TODO Ship release\n")
    ref = engine.list_items("Work")[0]
    with pytest.raises(ValueError):
        engine.toggle("Home", ref)


def test_refile_moves_subtree_and_creates_destination(tmp_path: Path) -> None:
    engine = _engine(tmp_path, SAMPLE, default_tags=["project"])

    result = engine.refile("Home", "Buy milk", "Later")

    text = _read(engine)
    assert result.section == "Later"
    assert text.endswith(
        "* Later :project:\n"
        "** TODO [#A] Buy milk :errand:urgent:\n"
        ":PROPERTIES:\n"
        ":Effort:   0:30\n"
        ":END:\n"
        "Body text.\n"
        "*** sub heading kept verbatim\n"
    )
    assert [ref.title for ref in engine.list_items("Home")] == ["Fix sink"]
    moved = engine.get_item("Later", "Buy milk")
    assert (moved.priority, moved.tags, moved.effort) == ("A", ["errand", "urgent"], 30)


def test_refile_to_same_section_is_rejected(tmp_path: Path) -> None:
    engine = _engine(tmp_path, SAMPLE)
    with pytest.raises(ValueError):
        engine.refile("Work", "Ship release", "Work")


def test_visit_reports_location_without_changes(tmp_path: Path) -> None:
    engine = _engine(tmp_path, SAMPLE)

    result = engine.visit("Work", "Ship release")

    assert result.changed is False
    assert result.line == 14
    assert result.offset == SAMPLE.index("** TODO Ship release")
    assert result.path == engine.store.path


def test_log_done_adds_and_removes_closed_timestamp(tmp_path: Path) -> None:
    engine = _engine(tmp_path, "* Work\n** TODO Ship release\nnotes\n", log_done=True)

    engine.toggle("Work", "Ship release")
    assert _read(engine) == (
        "* Work\n** DONE Ship release\nCLOSED: [2026-10-18 Sun 09:30]\nnotes\n"
    )

    engine.toggle("Work", "Ship release")
    assert _read(engine) == "* Work\n** Ship release\nnotes\n"


def test_set_state_rejects_unknown_keyword(tmp_path: Path) -> None:
    engine = _engine(tmp_path, SAMPLE)
    with pytest.raises(ValueError):
        engine.set_state("Work", "Ship release", "WAITING")
    assert engine.set_state("Work", "Ship release", "DONE").keyword == "DONE"


def test_apply_dispatches_by_action_name(tmp_path: Path) -> None:
    engine = _engine(tmp_path, "* Work\n")

    engine.apply("insert", "Work", "Ship release")
    engine.apply("set_priority", "Work", "Ship release", "C")
    engine.apply("setTags", "Work", "Ship release", "work:urgent")
    engine.apply("setProperty", "Work", "Ship release", ("owner", "bob"))
    engine.apply("set-effort", "Work", "Ship release", "2h")
    result = engine.apply("toggle", "Work", "Ship release")

    assert result.keyword == "DONE"
    item = engine.get_item("Work", "Ship release")
    assert item.priority == "C"
    assert item.tags == ["work", "urgent"]
    assert item.get_property("OWNER") == "bob"
    assert item.effort == 120

    with pytest.raises(ValueError):
        engine.apply("explode", "Work", "Ship release")
    with pytest.raises(ValueError):
        engine.apply("refile", "Work", "Ship release")


def test_changes_are_appended_to_the_activity_log(tmp_path: Path) -> None:
    engine = _engine(tmp_path, "* Work\n")

    engine.insert("Work", "Ship release")
    engine.visit("Work", "Ship release")

    log_path = engine.config.log_file
    assert log_path is not None
    lines = log_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    assert "insert" in lines[0]
    assert "Ship release" in lines[0]


def test_every_write_reparses_cleanly(tmp_path: Path) -> None:
    engine = _engine(tmp_path, SAMPLE)

    engine.insert("Errands", "Post letter")
    engine.set_tags("Errands", "Post letter", ["town"])
    engine.toggle("Home", "Buy milk")

    document = parse_document(_read(engine))
    assert [section.name for section in document.sections] == ["Home", "Work", "Errands"]
    assert document.sections[2].items[0].tags == ["town"]


def test_titles_starting_with_a_keyword_are_rejected(tmp_path: Path) -> None:
    engine = _engine(tmp_path, "* Work\n")

    with pytest.raises(ValueError):
        engine.insert("Work", "DONE laundry")

    assert _read(engine) == "* Work\n"
    assert engine.list_items("Work") == []


def test_clearing_state_of_keyword_like_title_is_rejected(tmp_path: Path) -> None:
    text = "* Work\n** DONE TODO laundry\n"
    engine = _engine(tmp_path, text)
    assert engine.get_item("Work", "TODO laundry").keyword == "DONE"

    with pytest.raises(ValueError):
        engine.toggle("Work", "TODO laundry")

    assert _read(engine) == text
    assert [ref.title for ref in engine.list_items("Work")] == ["TODO laundry"]
