"""orgtodo utility functions shared by the engine and the command line."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path


def _utc_now() -> str:
    return (
        datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")
    )


def _normalize_space(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def format_org_timestamp(moment: datetime, *, active: bool = False) -> str:
    """Format ``moment`` as an org timestamp, e.g. ``[2026-10-18 Sun 09:30]``."""
    stamp = moment.strftime("%Y-%m-%d %a %H:%M")
    return f"<{stamp}>" if active else f"[{stamp}]"


def _append_log(log_path: Path | None, message: str) -> None:
    if log_path is None:
        return
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("a", encoding="utf-8") as handle:
        handle.write(f"{_utc_now()} {message}\n")
