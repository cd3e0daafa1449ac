"""Bank session and synchronisation engine.

:class:`LedgerEngine` wires the session controller, conflict registry, scan
scheduler and cache store around one shared :class:`Session`, receives host
signals one at a time and exposes the operations used by the UI and slash
commands.
"""
from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from .cache_store import CacheStore
from .capabilities import CapabilityRegistry
from .characters import CharacterRegistry
from .conflicts import ConflictDetector, ConflictRegistry
from .error_log import ErrorLog
from .host_api import BankHost, SafeHost
from .saved_variables import SavedVariables
from .scan_scheduler import ScanScheduler
from .scheduler import (
    CONFLICT_RECHECK_DELAY,
    CURRENCY_REFRESH_DELAY,
    MONEY_REFRESH_DELAY,
    REPUTATION_REFRESH_DELAY,
    SAVE_CHARACTER_DELAY,
    DebouncedCall,
    DeferredScheduler,
    EventStats,
    TimerHandle,
)
from .session import Session, SessionController
from .settings import LedgerSettings


_LOGGER = logging.getLogger("WarbandLedger.Engine")


class Signal(str, Enum):
    SESSION_OPENED = "SessionOpened"
    SESSION_CLOSED = "SessionClosed"
    GUILD_SESSION_OPENED = "GuildSessionOpened"
    GUILD_SESSION_CLOSED = "GuildSessionClosed"
    SLOT_RANGE_CHANGED = "SlotRangeChanged"
    GUILD_SLOTS_CHANGED = "GuildSlotsChanged"
    EXTENSION_LOADED = "ExtensionLoaded"
    COMBAT_ENTERED = "CombatEntered"
    COMBAT_EXITED = "CombatExited"
    CURRENCY_CHANGED = "CurrencyChanged"
    REPUTATION_CHANGED = "ReputationChanged"
    MONEY_CHANGED = "MoneyChanged"
    PLAYER_ENTERING_WORLD = "PlayerEnteringWorld"
    PLAYER_LEVEL_UP = "PlayerLevelUp"


class _ProtectedScheduler:
    """Routes every deferred callback through the error log boundary."""

    def __init__(self, scheduler: DeferredScheduler, errors: ErrorLog) -> None:
        self._scheduler = scheduler
        self._errors = errors

    def now(self) -> float:
        return self._scheduler.now()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return self._scheduler.call_later(delay, self._errors.wrap("deferred callback", callback))


class LedgerEngine:
    def __init__(
        self,
        host: BankHost,
        saved: SavedVariables,
        settings: LedgerSettings,
        scheduler: DeferredScheduler,
        *,
        capabilities: Optional[CapabilityRegistry] = None,
        detectors: Optional[Iterable[ConflictDetector]] = None,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.host = host if isinstance(host, SafeHost) else SafeHost(host)
        self.saved = saved
        self.settings = settings
        self.capabilities = capabilities or CapabilityRegistry()
        self.stats = EventStats()
        self.errors = ErrorLog(wall_clock, self.notify, debug=lambda: self.settings.debug_mode)
        self.scheduler = _ProtectedScheduler(scheduler, self.errors)
        self.session = Session(in_combat=self.host.in_combat_lockdown())
        self.cache = CacheStore(saved, scheduler.now, default_ttl=settings.cache_ttl_seconds)
        self.characters = CharacterRegistry(self.host, saved, self.cache, wall_clock=wall_clock, notify=self.notify)
        self.conflicts = ConflictRegistry(
            self.host,
            saved,
            self.scheduler,
            self.capabilities,
            notify=self.notify,
            stats=self.stats,
            detectors=detectors,
        )
        self.scans = ScanScheduler(
            self.session,
            self.host,
            self.cache,
            self.scheduler,
            identity=self.characters.current_key,
            wall_clock=wall_clock,
            on_refresh=self.notify_refresh,
            stats=self.stats,
        )
        self.controller = SessionController(
            self.session,
            self.host,
            saved,
            settings,
            self.scheduler,
            self.capabilities,
            self.conflicts,
            self.scans,
            notify=self.notify,
            on_refresh=self.notify_refresh,
            stats=self.stats,
        )
        self._money_refresh = DebouncedCall(self.scheduler, "money-refresh", self.stats)
        self._currency_refresh = DebouncedCall(self.scheduler, "currency-refresh", self.stats)
        self._reputation_refresh = DebouncedCall(self.scheduler, "reputation-refresh", self.stats)
        self._save_character = DebouncedCall(self.scheduler, "save-character", self.stats)
        self._refresh_listeners: List[Callable[[], None]] = []
        self.refresh_count = 0
        self._handlers: Dict[Signal, Callable[..., Any]] = {
            Signal.SESSION_OPENED: self._on_session_opened,
            Signal.SESSION_CLOSED: self.controller.on_closed,
            Signal.GUILD_SESSION_OPENED: self.controller.on_guild_opened,
            Signal.GUILD_SESSION_CLOSED: self.controller.on_guild_closed,
            Signal.SLOT_RANGE_CHANGED: self._on_slot_range_changed,
            Signal.GUILD_SLOTS_CHANGED: self.scans.on_guild_slots_changed,
            Signal.EXTENSION_LOADED: self._on_extension_loaded,
            Signal.COMBAT_ENTERED: self.controller.on_combat_entered,
            Signal.COMBAT_EXITED: self.controller.on_combat_exited,
            Signal.CURRENCY_CHANGED: self._on_currency_changed,
            Signal.REPUTATION_CHANGED: self._on_reputation_changed,
            Signal.MONEY_CHANGED: self._on_money_changed,
            Signal.PLAYER_ENTERING_WORLD: self._on_player_entering_world,
            Signal.PLAYER_LEVEL_UP: self._on_player_level_up,
        }

    # Notifications ---------------------------------------------------------

    def notify(self, text: str) -> None:
        self.host.print_message(f"WarbandLedger: {text}")

    def add_refresh_listener(self, listener: Callable[[], None]) -> None:
        if listener not in self._refresh_listeners:
            self._refresh_listeners.append(listener)

    def remove_refresh_listener(self, listener: Callable[[], None]) -> None:
        if listener in self._refresh_listeners:
            self._refresh_listeners.remove(listener)

    def notify_refresh(self) -> None:
        self.refresh_count += 1
        window = self.capabilities.window
        if window is not None:
            self.errors.protected("window refresh", window.refresh)
        for listener in list(self._refresh_listeners):
            self.errors.protected("refresh listener", listener)

    # Signal dispatch -------------------------------------------------------

    def handle_signal(self, name: str, *args: Any) -> bool:
        """Dispatch one host signal inside the protected-call boundary."""

        try:
            signal = Signal(name)
        except ValueError:
            _LOGGER.debug("Ignoring unknown signal %r", name)
            return False
        if not self.settings.enabled:
            return False
        ok, _ = self.errors.protected(signal.value, self._handlers[signal], *args)
        return ok

    def _on_session_opened(self, hint: Optional[int] = None) -> None:
        if hint is None:
            hint = self.host.selected_bank_tab()
        self.controller.on_opened(hint)

    def _on_slot_range_changed(self, container_ids: Any = ()) -> bool:
        if isinstance(container_ids, int):
            container_ids = (container_ids,)
        return self.scans.on_slots_changed(container_ids or ())

    def _on_extension_loaded(self, name: str) -> bool:
        return self.conflicts.on_addon_loaded(name, CONFLICT_RECHECK_DELAY)

    def _on_currency_changed(self, *_: Any) -> None:
        self._currency_refresh.schedule(CURRENCY_REFRESH_DELAY, self._refresh_currencies)

    def _on_reputation_changed(self, *_: Any) -> None:
        self._reputation_refresh.schedule(REPUTATION_REFRESH_DELAY, self._refresh_reputations)

    def _refresh_currencies(self) -> None:
        tracker = self.capabilities.collections
        if tracker is not None:
            tracker.refresh_currencies()
        self.cache.invalidate("characters")
        self.notify_refresh()

    def _refresh_reputations(self) -> None:
        tracker = self.capabilities.collections
        if tracker is not None:
            tracker.refresh_reputations()
        self.cache.invalidate("characters")
        self.notify_refresh()

    def _on_money_changed(self, *_: Any) -> None:
        self.characters.update_gold()
        if self.session.shared_accessible:
            deposited = self.host.deposited_money()
            if deposited is not None:
                self.saved.global_["warbandBank"]["gold"] = deposited
        self._money_refresh.schedule(MONEY_REFRESH_DELAY, self.notify_refresh)

    def _on_player_entering_world(self, *_: Any) -> None:
        self.session.in_combat = self.host.in_combat_lockdown()
        if not self.characters.saved_this_login:
            self._save_character.schedule(SAVE_CHARACTER_DELAY, self.characters.save_current_character)
        self.conflicts.request_check()

    def _on_player_level_up(self, *_: Any) -> None:
        self.characters.save_current_character()

    # Operations ------------------------------------------------------------

    def scan_shared_store(self) -> bool:
        if not self.session.is_open:
            self.notify("Open the bank to scan the Warband bank.")
            return False
        snapshot = self.scans.rescan_shared()
        if snapshot is None:
            self.notify("Warband bank is not accessible right now.")
            return False
        self.session.shared_accessible = True
        self.notify(f"Warband bank scanned: {snapshot.used_slots}/{snapshot.total_slots} slots used.")
        self.notify_refresh()
        return True

    def scan_personal_store(self) -> bool:
        if not self.session.is_open:
            self.notify("Open the bank to scan your personal bank.")
            return False
        snapshot = self.scans.rescan_personal()
        if snapshot is None:
            self.notify("Personal bank is not accessible right now.")
            return False
        self.notify(f"Personal bank scanned: {snapshot.used_slots}/{snapshot.total_slots} slots used.")
        self.notify_refresh()
        return True

    def scan_guild_store(self) -> bool:
        if not self.session.guild_open:
            self.notify("Open the guild bank to scan it.")
            return False
        snapshot = self.scans.rescan_guild()
        if snapshot is None:
            self.notify("Guild bank is not accessible right now.")
            return False
        self.notify(f"Guild bank scanned: {snapshot.used_slots}/{snapshot.total_slots} slots used.")
        self.notify_refresh()
        return True

    def force_scan(self) -> Dict[str, bool]:
        """Scan both bank stores without checking the session flags."""

        results = {
            "warband": self.scans.rescan_shared() is not None,
            "personal": self.scans.rescan_personal() is not None,
        }
        self.cache.invalidate_derived()
        self.notify(
            "Force scan: warband {}, personal {}.".format(
                "updated" if results["warband"] else "unavailable",
                "updated" if results["personal"] else "unavailable",
            )
        )
        self.notify_refresh()
        return results

    def clear_all_caches(self) -> None:
        self.cache.clear_all()
        self.notify_refresh()

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()

    def is_using_other_owner(self) -> bool:
        return self.conflicts.is_using_other()

    def toggle_favorite(self, key: str) -> Optional[bool]:
        state = self.characters.toggle_favorite(key)
        if state is not None:
            self.notify_refresh()
        return state

    def get_conflict_status(self) -> List[Dict[str, Any]]:
        return self.conflicts.status()

    def reset_all_conflict_choices(self) -> None:
        self.conflicts.reset_all_choices()

    def set_bank_module_enabled(self, enabled: bool) -> bool:
        return self.conflicts.set_bank_module_enabled(enabled)

    def list_characters(self) -> List[Dict[str, Any]]:
        return self.characters.list_characters()

    def export_errors(self) -> str:
        return self.errors.export()

    def get_event_stats(self) -> Dict[str, int]:
        return self.stats.as_dict()

    def bank_debug_info(self) -> Dict[str, Any]:
        warband = self.cache.warband_snapshot()
        return {
            "session": self.session.as_dict(),
            "manageBankUI": self.controller.manages_bank_ui(),
            "pendingRescans": self.scans.pending(),
            "pendingOpenSteps": self.controller.pending_steps(),
            "conflictQueue": self.conflicts.queue,
            "conflictProcessing": self.conflicts.is_processing,
            "reloadRequired": self.conflicts.reload_required,
            "warband": {
                "totalSlots": warband.total_slots,
                "usedSlots": warband.used_slots,
                "gold": warband.gold,
                "lastScan": warband.last_scan,
            },
            "characters": len(self.saved.global_["characters"]),
        }

    def emergency_recovery(self) -> Dict[str, Any]:
        """Reset session-transient flags and pending work; persisted data is untouched."""

        self.cancel_pending()
        self.conflicts.reset_transient()
        self.controller.reset_transient()
        self.cache.clear_all()
        self.notify("Emergency recovery complete.")
        self.notify_refresh()
        return {"session": self.session.as_dict(), "errors": self.errors.stats()}

    def cancel_pending(self) -> None:
        self.scans.cancel_all()
        self.conflicts.cancel_pending()
        for call in (self._money_refresh, self._currency_refresh, self._reputation_refresh, self._save_character):
            call.cancel()
