from __future__ import annotations

from collections import Counter
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import pytest

from ledger_plugin.capabilities import CapabilityRegistry
from ledger_plugin.engine import LedgerEngine
from ledger_plugin.host_api import HostQueryUnavailable
from ledger_plugin.saved_variables import SavedVariables
from ledger_plugin.scanner import PERSONAL_BANK_IDS, WARBAND_TAB_IDS
from ledger_plugin.scheduler import VirtualScheduler
from ledger_plugin.settings import LedgerSettings


WALL_CLOCK = 1_700_000_000.0


class FakeHost:
    """Scriptable stand-in for the game client."""

    def __init__(self) -> None:
        self.capacities: Dict[int, Optional[int]] = {}
        self.contents: Dict[Tuple[int, int], Dict[str, Any]] = {}
        self.item_details: Dict[int, Dict[str, Any]] = {}
        self.deposited: Optional[int] = 0
        self.money: Optional[int] = 0
        self.identity: Optional[Dict[str, Any]] = {
            "name": "Aria",
            "realm": "Silvermoon",
            "class": "Mage",
            "level": 80,
            "faction": "Horde",
            "race": "BloodElf",
        }
        self.selected_tab: Optional[int] = None
        self.combat = False
        self.loaded_addons: Set[str] = set()
        self.addon_options: Dict[Tuple[str, str], Any] = {}
        self.fail_actions = False
        self.enable_calls: List[Tuple[str, bool]] = []
        self.option_calls: List[Tuple[str, str, Any]] = []
        self.native_visible_calls: List[bool] = []
        self.reloads = 0
        self.messages: List[str] = []
        self.guild: Optional[str] = None
        self.guild_tabs: Dict[int, Dict[str, Any]] = {}
        self.guild_items: Dict[Tuple[int, int], Dict[str, Any]] = {}
        self.queries: Counter = Counter()

    # Scripting helpers ---------------------------------------------------

    def set_warband_capacities(self, capacities: List[Optional[int]]) -> None:
        for container_id, capacity in zip(WARBAND_TAB_IDS, capacities):
            self.capacities[container_id] = capacity

    def open_personal_bank(self, main_slots: int = 28) -> None:
        self.capacities[PERSONAL_BANK_IDS[0]] = main_slots

    def put(self, container_id: int, slot: int, item_id: int, count: int = 1, name: Optional[str] = None, **extra: Any) -> None:
        self.contents[(container_id, slot)] = {"itemID": item_id, "stackCount": count, **extra}
        self.item_details.setdefault(item_id, {"name": name or f"Item {item_id}", "quality": 1, "classID": 7})

    def close_all(self) -> None:
        self.capacities.clear()

    # BankHost ------------------------------------------------------------

    def container_num_slots(self, container_id: int) -> Optional[int]:
        self.queries["container_num_slots"] += 1
        if container_id not in self.capacities:
            return 0
        capacity = self.capacities[container_id]
        if capacity is None:
            raise HostQueryUnavailable(f"container {container_id}")
        return capacity

    def container_item_info(self, container_id: int, slot: int) -> Optional[Dict[str, Any]]:
        return self.contents.get((container_id, slot))

    def item_info(self, item_id: int) -> Optional[Dict[str, Any]]:
        return self.item_details.get(item_id)

    def deposited_money(self) -> Optional[int]:
        return self.deposited

    def player_money(self) -> Optional[int]:
        return self.money

    def player_identity(self) -> Optional[Dict[str, Any]]:
        return self.identity

    def selected_bank_tab(self) -> Optional[int]:
        return self.selected_tab

    def in_combat_lockdown(self) -> bool:
        return self.combat

    def is_addon_loaded(self, name: str) -> bool:
        return name in self.loaded_addons

    def addon_option(self, name: str, option: str) -> Any:
        return self.addon_options.get((name, option))

    def set_addon_option(self, name: str, option: str, value: Any) -> bool:
        self.option_calls.append((name, option, value))
        if self.fail_actions:
            return False
        self.addon_options[(name, option)] = value
        return True

    def set_addon_enabled(self, name: str, enabled: bool) -> bool:
        self.enable_calls.append((name, enabled))
        if self.fail_actions:
            return False
        if enabled:
            self.loaded_addons.add(name)
        else:
            self.loaded_addons.discard(name)
        return True

    def set_native_bank_visible(self, visible: bool) -> None:
        self.native_visible_calls.append(visible)

    def reload_ui(self) -> bool:
        if self.fail_actions:
            return False
        self.reloads += 1
        return True

    def guild_name(self) -> Optional[str]:
        return self.guild

    def guild_bank_num_tabs(self) -> Optional[int]:
        return len(self.guild_tabs) if self.guild_tabs else None

    def guild_bank_tab_info(self, tab: int) -> Optional[Dict[str, Any]]:
        return self.guild_tabs.get(tab)

    def guild_bank_item(self, tab: int, slot: int) -> Optional[Dict[str, Any]]:
        return self.guild_items.get((tab, slot))

    def print_message(self, text: str) -> None:
        self.messages.append(text)


class RecordingPrompt:
    def __init__(self) -> None:
        self.requests: List[str] = []
        self._respond: Optional[Callable[[str, str], None]] = None

    def request_decision(self, name: str, respond: Callable[[str, str], None]) -> None:
        self.requests.append(name)
        self._respond = respond

    def answer(self, choice: str) -> None:
        assert self._respond is not None
        self._respond(self.requests[-1], choice)


class RecordingReload:
    def __init__(self) -> None:
        self.calls = 0
        self._accept: Optional[Callable[[], None]] = None

    def confirm_reload(self, accept: Callable[[], None]) -> None:
        self.calls += 1
        self._accept = accept

    def accept(self) -> None:
        assert self._accept is not None
        self._accept()


class RecordingWindow:
    def __init__(self) -> None:
        self.shown: List[str] = []
        self.hidden = 0
        self.refreshes = 0
        self.visible = False

    def show(self, store_kind: str) -> None:
        self.shown.append(store_kind)
        self.visible = True

    def hide(self) -> None:
        self.hidden += 1
        self.visible = False

    def is_shown(self) -> bool:
        return self.visible

    def refresh(self) -> None:
        self.refreshes += 1


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def scheduler() -> VirtualScheduler:
    return VirtualScheduler()


@pytest.fixture
def saved(tmp_path) -> SavedVariables:
    return SavedVariables(tmp_path / "WarbandLedgerDB.json", "Aria-Silvermoon")


@pytest.fixture
def settings() -> LedgerSettings:
    return LedgerSettings()


@pytest.fixture
def prompt() -> RecordingPrompt:
    return RecordingPrompt()


@pytest.fixture
def reload_prompt() -> RecordingReload:
    return RecordingReload()


@pytest.fixture
def window() -> RecordingWindow:
    return RecordingWindow()


@pytest.fixture
def capabilities(prompt, reload_prompt, window) -> CapabilityRegistry:
    registry = CapabilityRegistry()
    registry.register_conflict_prompt(prompt)
    registry.register_reload_prompt(reload_prompt)
    registry.register_window(window)
    return registry


@pytest.fixture
def engine(host, saved, settings, scheduler, capabilities) -> LedgerEngine:
    return LedgerEngine(host, saved, settings, scheduler, capabilities=capabilities, wall_clock=lambda: WALL_CLOCK)
