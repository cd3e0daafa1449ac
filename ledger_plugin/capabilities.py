"""Optional collaborators that register with the engine at startup."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol


_LOGGER = logging.getLogger("WarbandLedger.Capabilities")

DecisionCallback = Callable[[str, str], None]


class BankWindow(Protocol):
    def show(self, store_kind: str) -> None: ...

    def hide(self) -> None: ...

    def is_shown(self) -> bool: ...

    def refresh(self) -> None: ...


class ConflictPrompt(Protocol):
    def request_decision(self, name: str, respond: DecisionCallback) -> None:
        """Present the use-ours / use-theirs choice and call ``respond(name, choice)``."""


class ReloadPrompt(Protocol):
    def confirm_reload(self, accept: Callable[[], None]) -> None:
        """Ask the user to reload; call ``accept()`` if they agree."""


class CollectionTracker(Protocol):
    def refresh_currencies(self) -> None: ...

    def refresh_reputations(self) -> None: ...


@dataclass
class CapabilityRegistry:
    """Holds at most one implementation per capability."""

    window: Optional[BankWindow] = None
    conflict_prompt: Optional[ConflictPrompt] = None
    reload_prompt: Optional[ReloadPrompt] = None
    collections: Optional[CollectionTracker] = None

    def register_window(self, window: BankWindow) -> None:
        self.window = window
        _LOGGER.debug("Bank window registered: %r", window)

    def unregister_window(self) -> None:
        self.window = None

    def register_conflict_prompt(self, prompt: ConflictPrompt) -> None:
        self.conflict_prompt = prompt
        _LOGGER.debug("Conflict prompt registered: %r", prompt)

    def unregister_conflict_prompt(self) -> None:
        self.conflict_prompt = None

    def register_reload_prompt(self, prompt: ReloadPrompt) -> None:
        self.reload_prompt = prompt

    def unregister_reload_prompt(self) -> None:
        self.reload_prompt = None

    def register_collections(self, tracker: CollectionTracker) -> None:
        self.collections = tracker

    def unregister_collections(self) -> None:
        self.collections = None

    def window_shown(self) -> bool:
        window = self.window
        return bool(window is not None and window.is_shown())
