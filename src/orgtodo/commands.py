from __future__ import annotations

import argparse
import json
import os
import subprocess
import sys
from pathlib import Path
from typing import Any

from orgtodo.config import load_config
from orgtodo.constants import ACTION_ALIASES, ACTION_KINDS, EFFORT_PROPERTY, LIST_NAME_ENV_VAR
from orgtodo.engine import TodoEngine
from orgtodo.index import list_items as _index_list_items, require_section
from orgtodo.models import ActionResult, OrgTodoError
from orgtodo.resolver import validate_section_name
from orgtodo.session import Session
from orgtodo.utils import _normalize_space


# ---------------------------------------------------------------------------
# Name providers supplied by the command line caller
# ---------------------------------------------------------------------------


def _env_list_name() -> str | None:
    return _normalize_space(os.environ.get(LIST_NAME_ENV_VAR, "")) or None


def _git_worktree_name(cwd: Path | None = None) -> str | None:
    command = ["git", "-C", str(cwd or Path.cwd()), "rev-parse", "--show-toplevel"]
    try:
        proc = subprocess.run(
            command,
            check=False,
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
            timeout=5,
        )
    except (FileNotFoundError, OSError, subprocess.TimeoutExpired):
        return None
    if proc.returncode != 0:
        return None
    top = proc.stdout.strip()
    return Path(top).name if top else None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build_session(args: argparse.Namespace) -> Session:
    root = Path(args.root).expanduser()
    overrides: dict[str, Any] = {}
    if getattr(args, "file", None):
        overrides["storage_path"] = str(Path(args.file).expanduser().resolve())
    config = load_config(root, overrides=overrides)
    return Session(
        engine=TodoEngine(config),
        name_providers=[_env_list_name, _git_worktree_name],
    )


def _result_payload(result: ActionResult) -> dict[str, Any]:
    return {
        "action": result.action,
        "section": result.section,
        "title": result.title,
        "keyword": result.keyword,
        "offset": result.offset,
        "line": result.line,
        "path": str(result.path),
        "changed": result.changed,
        "message": result.message,
    }


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2))


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_sections(args: argparse.Namespace) -> int:
    try:
        session = _build_session(args)
        names = session.list_sections()
    except OrgTodoError as exc:
        print(f"orgtodo sections: ERROR {exc}", file=sys.stderr)
        return 1
    if args.json:
        _print_json({"path": str(session.engine.store.path), "sections": names})
        return 0
    for name in names:
        print(name)
    return 0


def _cmd_select(args: argparse.Namespace) -> int:
    try:
        session = _build_session(args)
        section = session.select_or_create_section(args.name)
    except (OrgTodoError, ValueError) as exc:
        print(f"orgtodo select: ERROR {exc}", file=sys.stderr)
        return 1
    payload = {
        "section": section.name,
        "tags": list(section.tags),
        "line": section.line,
        "offset": section.offset,
        "path": str(session.engine.store.path),
    }
    if args.json:
        _print_json(payload)
        return 0
    print("orgtodo select")
    for key, value in payload.items():
        print(f"{key}: {value}")
    return 0


def _cmd_items(args: argparse.Namespace) -> int:
    try:
        session = _build_session(args)
        document = session.engine.load()
        section = require_section(document, args.section)
        refs = _index_list_items(document, args.section)
    except OrgTodoError as exc:
        print(f"orgtodo items: ERROR {exc}", file=sys.stderr)
        return 1
    rows = []
    for ref, entry in zip(refs, section.items):
        rows.append(
            {
                "title": ref.title,
                "offset": ref.offset,
                "keyword": entry.keyword,
                "priority": entry.priority,
                "tags": list(entry.tags),
                "effort": entry.get_property(EFFORT_PROPERTY),
            }
        )
    if args.json:
        _print_json({"section": section.name, "items": rows})
        return 0
    for row in rows:
        priority = f" [#{row['priority']}]" if row["priority"] else ""
        tags = f" :{':'.join(row['tags'])}:" if row["tags"] else ""
        print(f"{row['keyword']}{priority} {row['title']}{tags}")
    return 0


def _action_value(kind: str, values: list[str], destination: str | None) -> Any:
    if kind == "setTags":
        return values
    if kind == "setProperty":
        if not values:
            raise ValueError("setProperty requires KEY [VALUE]")
        return (values[0], " ".join(values[1:]) if len(values) > 1 else None)
    if kind == "refile":
        return destination or (values[0] if values else None)
    if kind in {"setPriority", "setEffort", "setState"}:
        return " ".join(values) if values else None
    return None


def _cmd_apply(args: argparse.Namespace) -> int:
    kind = ACTION_ALIASES.get(args.action, args.action)
    try:
        session = _build_session(args)
        session.active_section_name = validate_section_name(args.section)
        value = _action_value(kind, list(args.values), args.to)
        result = session.apply_action(kind, args.item, value)
    except (OrgTodoError, ValueError) as exc:
        print(f"orgtodo apply: ERROR {exc}", file=sys.stderr)
        return 1
    if args.json:
        _print_json(_result_payload(result))
        return 0
    print(f"orgtodo {result.action}: {result.message}")
    print(f"location: {result.path}:{result.line}")
    return 0


def _cmd_show(args: argparse.Namespace) -> int:
    try:
        session = _build_session(args)
        entry = session.engine.get_item(args.section, args.item)
    except OrgTodoError as exc:
        print(f"orgtodo show: ERROR {exc}", file=sys.stderr)
        return 1
    payload = {
        "section": args.section,
        "title": entry.title,
        "keyword": entry.keyword,
        "priority": entry.priority,
        "tags": list(entry.tags),
        "effort_minutes": entry.effort,
        "properties": entry.properties,
        "line": entry.line,
    }
    if args.json:
        _print_json(payload)
        return 0
    print("orgtodo show")
    for key, value in payload.items():
        print(f"{key}: {value}")
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--root",
        default=".",
        help="Workspace root holding .orgtodo/config.yaml (default: current directory)",
    )
    parser.add_argument(
        "--file",
        default=None,
        help="Outline document to operate on (overrides storage_path from config)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Emit machine-readable JSON output.",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="orgtodo command line interface")
    subparsers = parser.add_subparsers(dest="command")

    sections = subparsers.add_parser("sections", help="List TODO list (section) names")
    _add_common_arguments(sections)
    sections.set_defaults(handler=_cmd_sections)

    select = subparsers.add_parser(
        "select", help="Find or create a TODO list; guesses the name when omitted"
    )
    select.add_argument("name", nargs="?", default=None, help="Section name")
    _add_common_arguments(select)
    select.set_defaults(handler=_cmd_select)

    items = subparsers.add_parser("items", help="List items of a TODO list")
    items.add_argument("section", help="Section name")
    _add_common_arguments(items)
    items.set_defaults(handler=_cmd_items)

    action_choices = list(ACTION_KINDS) + ["setState"] + sorted(ACTION_ALIASES)
    apply = subparsers.add_parser("apply", help="Apply an action to an existing or new item")
    apply.add_argument("action", choices=action_choices, help="Action kind")
    apply.add_argument("section", help="Section name (created when missing)")
    apply.add_argument("item", help="Item title; unknown titles are inserted")
    apply.add_argument("values", nargs="*", help="Action arguments (priority, tags, effort, KEY VALUE)")
    apply.add_argument("--to", default=None, help="Destination section for refile")
    _add_common_arguments(apply)
    apply.set_defaults(handler=_cmd_apply)

    show = subparsers.add_parser("show", help="Print one item's attributes")
    show.add_argument("section", help="Section name")
    show.add_argument("item", help="Item title")
    _add_common_arguments(show)
    show.set_defaults(handler=_cmd_show)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 2
    return int(handler(args))


if __name__ == "__main__":
    raise SystemExit(main())
