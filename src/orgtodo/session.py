"""Caller session: the active section and the pluggable collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from orgtodo.engine import Target, TodoEngine
from orgtodo.models import ActionResult, ItemRef, Section

NameProvider = Callable[[], Optional[str]]
SelectionFn = Callable[[Sequence[tuple[str, Any]], str], Any]


def first_guess(providers: Sequence[NameProvider]) -> str | None:
    """Return the first non-empty name any provider supplies."""
    for provider in providers:
        guess = provider()
        if guess is not None and str(guess).strip():
            return str(guess).strip()
    return None


@dataclass
class Session:
    """Per-caller state passed explicitly into each operation.

    Only the active section *name* is kept; items are re-resolved by every
    engine transaction.
    """

    engine: TodoEngine
    name_providers: list[NameProvider] = field(default_factory=list)
    select: SelectionFn | None = None
    active_section_name: str | None = None

    def guess_section_name(self) -> str | None:
        if not self.engine.config.guess_enabled:
            return None
        return first_guess(self.name_providers)

    def list_sections(self) -> list[str]:
        return self.engine.list_section_names()

    def select_or_create_section(self, name_hint: str | None = None) -> Section:
        name = (name_hint or "").strip() or self.guess_section_name()
        if not name and self.select is not None:
            names = self.list_sections()
            choice = self.select([(candidate, candidate) for candidate in names], "List: ")
            name = str(choice or "").strip()
        if not name:
            raise ValueError("no section name given and none could be guessed")
        section = self.engine.resolve_or_create(name)
        self.active_section_name = section.name
        return section

    def _require_active(self) -> str:
        if not self.active_section_name:
            raise ValueError("no active section; call select_or_create_section first")
        return self.active_section_name

    def list_items(self, section_name: str | None = None) -> list[ItemRef]:
        return self.engine.list_items(section_name or self._require_active())

    def choose_item(self, prompt: str = "Item: ") -> Target:
        """Ask the selection UI for an item; typed text comes back unchanged."""
        if self.select is None:
            raise ValueError("no selection function configured for this session")
        refs = self.list_items()
        return self.select([(ref.title, ref) for ref in refs], prompt)

    def apply_action(self, action: str, item: Target, value: Any = None) -> ActionResult:
        return self.engine.apply(action, self._require_active(), item, value)
