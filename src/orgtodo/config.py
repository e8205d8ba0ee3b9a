from __future__ import annotations

import importlib.resources as importlib_resources
import json
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator

from orgtodo.constants import (
    CONFIG_DIRNAME,
    CONFIG_FILENAME,
    DEFAULT_ARCHIVE_LOCATION,
    DEFAULT_HIGHEST_PRIORITY,
    DEFAULT_LOG_FILE,
    DEFAULT_LOWEST_PRIORITY,
    DEFAULT_STORAGE_PATH,
    DEFAULT_TODO_STATE_CYCLE,
    DONE_SEPARATOR,
    KEYWORD_PATTERN,
    TAG_PATTERN,
)
from orgtodo.models import ConfigurationError, PriorityRange, TodoConfig, _coerce_bool
from orgtodo.parser import split_keyword_cycle


def _config_path(root: Path) -> Path:
    return root / CONFIG_DIRNAME / CONFIG_FILENAME


def _load_config_schema() -> dict[str, Any]:
    resource = importlib_resources.files("orgtodo").joinpath("schemas/config.schema.json")
    return json.loads(resource.read_text(encoding="utf-8"))


def _format_error_path(path: Any) -> str:
    parts = [str(part) for part in path]
    return ".".join(parts) if parts else "<root>"


def _load_config_mapping(root: Path) -> dict[str, Any]:
    config_path = _config_path(root)
    if not config_path.exists():
        return {}
    try:
        loaded = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"config could not be parsed at {config_path}: {exc}") from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigurationError(f"{config_path} must contain a YAML mapping")
    return loaded


def _validate_config_mapping(payload: dict[str, Any], *, source: str) -> None:
    validator = Draft202012Validator(_load_config_schema())
    failures: list[str] = []
    for error in sorted(
        validator.iter_errors(payload), key=lambda item: _format_error_path(item.path)
    ):
        location = _format_error_path(error.path)
        failures.append(f"{source} schema violation at {location}: {error.message}")
    if failures:
        raise ConfigurationError("; ".join(failures))


def _validate_state_cycle(raw_cycle: Any) -> tuple[str, ...]:
    if not isinstance(raw_cycle, (list, tuple)):
        raise ConfigurationError("todo_state_cycle must be a list of keywords")
    cycle = [str(keyword).strip() for keyword in raw_cycle]
    if cycle.count(DONE_SEPARATOR) > 1:
        raise ConfigurationError("todo_state_cycle may contain at most one '|' separator")
    keywords = [keyword for keyword in cycle if keyword != DONE_SEPARATOR]
    if not keywords:
        raise ConfigurationError("todo_state_cycle must include at least one keyword")
    for keyword in keywords:
        if not KEYWORD_PATTERN.match(keyword) or DONE_SEPARATOR in keyword:
            raise ConfigurationError(f"todo_state_cycle keyword '{keyword}' is invalid")
    duplicates = sorted({keyword for keyword in keywords if keywords.count(keyword) > 1})
    if duplicates:
        raise ConfigurationError(f"todo_state_cycle repeats keywords: {duplicates}")
    if cycle[0] == DONE_SEPARATOR:
        raise ConfigurationError("todo_state_cycle must start with an open keyword")
    return tuple(cycle)


def _validate_default_tags(raw_tags: Any) -> tuple[str, ...]:
    if raw_tags is None:
        return ()
    if not isinstance(raw_tags, (list, tuple)):
        raise ConfigurationError("default_tags must be a list of tag names")
    tags: list[str] = []
    for raw_tag in raw_tags:
        tag = str(raw_tag).strip()
        if not TAG_PATTERN.match(tag):
            raise ConfigurationError(f"default_tags entry '{raw_tag}' is not a valid tag")
        if tag not in tags:
            tags.append(tag)
    return tuple(tags)


def _validate_priorities(raw: Any) -> PriorityRange:
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigurationError("priorities must be a mapping with highest/lowest")
    highest = str(raw.get("highest", DEFAULT_HIGHEST_PRIORITY)).strip().upper()
    lowest = str(raw.get("lowest", DEFAULT_LOWEST_PRIORITY)).strip().upper()
    for label, value in (("highest", highest), ("lowest", lowest)):
        if len(value) != 1 or not value.isalnum():
            raise ConfigurationError(f"priorities.{label} must be a single letter or digit")
    if ord(highest) > ord(lowest):
        raise ConfigurationError(
            f"priorities.highest '{highest}' must sort before priorities.lowest '{lowest}'"
        )
    return PriorityRange(highest=highest, lowest=lowest)


def _resolve_path(root: Path, raw: str) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = root / path
    return path


def load_config(root: Path, *, overrides: dict[str, Any] | None = None) -> TodoConfig:
    """Load ``.orgtodo/config.yaml`` under ``root`` into a :class:`TodoConfig`.

    A missing file yields the defaults. ``overrides`` are merged over the
    file contents before validation.
    """
    root = Path(root).expanduser().resolve()
    payload = _load_config_mapping(root)
    if overrides:
        payload = {**payload, **{k: v for k, v in overrides.items() if v is not None}}
    _validate_config_mapping(payload, source=str(_config_path(root)))

    cycle = _validate_state_cycle(payload.get("todo_state_cycle", list(DEFAULT_TODO_STATE_CYCLE)))
    _todo_states, done_states = split_keyword_cycle(cycle)

    raw_log_file = payload.get("log_file", DEFAULT_LOG_FILE)
    log_file = _resolve_path(root, str(raw_log_file)) if raw_log_file else None

    return TodoConfig(
        root=root,
        storage_path=_resolve_path(root, str(payload.get("storage_path", DEFAULT_STORAGE_PATH))),
        default_tags=_validate_default_tags(payload.get("default_tags")),
        guess_enabled=_coerce_bool(payload.get("guess_enabled"), default=True),
        todo_state_cycle=cycle,
        done_states=done_states,
        archive_location=str(payload.get("archive_location", DEFAULT_ARCHIVE_LOCATION)),
        priorities=_validate_priorities(payload.get("priorities")),
        log_done=_coerce_bool(payload.get("log_done"), default=False),
        log_file=log_file,
    )
