"""Whole-document storage: full reads and atomic full rewrites."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from orgtodo.models import StorageError


class DocumentStore:
    """A text document identified by path.

    Reads return the whole text (``""`` when the file does not exist yet);
    writes replace the whole file through a temporary sibling and
    ``os.replace`` so a failed write never leaves partial content behind.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> str:
        if not self.path.exists():
            return ""
        try:
            with self.path.open("r", encoding="utf-8", newline="") as handle:
                return handle.read()
        except (OSError, UnicodeDecodeError) as exc:
            raise StorageError(f"could not read {self.path}: {exc}", path=self.path) from exc

    def write(self, text: str) -> None:
        tmp_name = ""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
            )
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
                handle.write(text)
            if self.path.exists():
                os.chmod(tmp_name, self.path.stat().st_mode & 0o777)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageError(f"could not write {self.path}: {exc}", path=self.path) from exc

    def __repr__(self) -> str:
        return f"DocumentStore({str(self.path)!r})"
