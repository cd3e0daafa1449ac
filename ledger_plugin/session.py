"""Bank session state machine.

The session moves from closed to one of the open store kinds on an open
signal and back on close. While open it may be *suppressed*, meaning the
host's own bank frame is hidden in favour of the plugin window. The shared
(warband) store only counts as open once a deferred probe confirmed it can be
enumerated. Window visibility is never toggled during combat; a show that was
blocked by combat is replayed once when combat ends.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, Optional

from .capabilities import CapabilityRegistry
from .host_api import SafeHost
from .saved_variables import SavedVariables
from .scanner import WARBAND_TAB_IDS
from .scheduler import (
    OPEN_SETTLE_DELAY,
    WINDOW_SHOW_DELAY,
    DebouncedCall,
    DeferredScheduler,
    EventStats,
)
from .settings import LedgerSettings

if TYPE_CHECKING:  # pragma: no cover
    from .conflicts import ConflictRegistry
    from .scan_scheduler import ScanScheduler


_LOGGER = logging.getLogger("WarbandLedger.Session")

WARBAND_TAB_HINT = 2


class StoreKind(str, Enum):
    NONE = "none"
    PERSONAL = "personal"
    SHARED = "warband"
    GUILD = "guild"


class OpenStep(Enum):
    PROBE_SHARED = "probe-shared"
    SHOW_WINDOW = "show-window"


def infer_store_kind(hint: Optional[int], warband_tab: int = WARBAND_TAB_HINT) -> StoreKind:
    """Map the host's pre-selected bank tab to a store kind.

    The host does not report this reliably, so anything other than the
    warband tab is treated as the personal bank.
    """

    if hint is not None and hint == warband_tab:
        return StoreKind.SHARED
    return StoreKind.PERSONAL


@dataclass
class Session:
    is_open: bool = False
    active_store_kind: StoreKind = StoreKind.NONE
    bank_store_kind: StoreKind = StoreKind.NONE
    suppressed: bool = False
    shared_accessible: bool = False
    guild_open: bool = False
    background_mode: bool = False
    in_combat: bool = False
    show_pending_after_combat: bool = False

    @property
    def state(self) -> str:
        if self.active_store_kind is StoreKind.PERSONAL:
            base = "PersonalOpen"
        elif self.active_store_kind is StoreKind.SHARED:
            base = "SharedOpen"
        elif self.active_store_kind is StoreKind.GUILD:
            base = "GuildOpen"
        else:
            return "Closed"
        return f"{base}/{'Suppressed' if self.suppressed else 'Visible'}"

    def reset_bank(self) -> None:
        self.is_open = False
        self.bank_store_kind = StoreKind.NONE
        self.suppressed = False
        self.shared_accessible = False
        self.background_mode = False
        self.show_pending_after_combat = False
        self.active_store_kind = StoreKind.GUILD if self.guild_open else StoreKind.NONE

    def as_dict(self) -> Dict[str, object]:
        return {
            "state": self.state,
            "isOpen": self.is_open,
            "activeStoreKind": self.active_store_kind.value,
            "suppressed": self.suppressed,
            "sharedStoreAccessible": self.shared_accessible,
            "guildOpen": self.guild_open,
            "backgroundMode": self.background_mode,
            "inCombat": self.in_combat,
            "showPendingAfterCombat": self.show_pending_after_combat,
        }


class SessionController:
    """Applies open/close/combat signals to the shared :class:`Session`."""

    def __init__(
        self,
        session: Session,
        host: SafeHost,
        saved: SavedVariables,
        settings: LedgerSettings,
        scheduler: DeferredScheduler,
        capabilities: CapabilityRegistry,
        conflicts: "ConflictRegistry",
        scans: "ScanScheduler",
        *,
        notify: Callable[[str], None],
        on_refresh: Callable[[], None],
        stats: Optional[EventStats] = None,
    ) -> None:
        self.session = session
        self._host = host
        self._saved = saved
        self._settings = settings
        self._capabilities = capabilities
        self._conflicts = conflicts
        self._scans = scans
        self._notify = notify
        self._on_refresh = on_refresh
        self._steps: Dict[OpenStep, DebouncedCall] = {
            step: DebouncedCall(scheduler, f"open:{step.value}", stats) for step in OpenStep
        }

    # Policy ----------------------------------------------------------------

    def manages_bank_ui(self) -> bool:
        if not self._settings.replace_default_bank:
            return False
        if not self._saved.profile.get("bankModuleEnabled", True):
            return False
        return not self._conflicts.is_using_other()

    def pending_steps(self) -> Dict[str, bool]:
        return {step.value: call.pending for step, call in self._steps.items()}

    # Signals ---------------------------------------------------------------

    def on_opened(self, hint: Optional[int] = None) -> None:
        session = self.session
        session.is_open = True
        session.active_store_kind = infer_store_kind(hint)
        session.bank_store_kind = session.active_store_kind
        session.shared_accessible = False
        manage = self.manages_bank_ui()
        session.background_mode = not manage
        _LOGGER.debug("Bank opened: hint=%r kind=%s manage_ui=%s", hint, session.active_store_kind.value, manage)

        if self._settings.auto_scan:
            self._scans.rescan_personal()

        if manage:
            session.suppressed = True
            self._host.set_native_bank_visible(False)

        self._steps[OpenStep.PROBE_SHARED].schedule(OPEN_SETTLE_DELAY, lambda: self._run_step(OpenStep.PROBE_SHARED))
        if manage and self._settings.auto_open_window:
            self._steps[OpenStep.SHOW_WINDOW].schedule(
                OPEN_SETTLE_DELAY + WINDOW_SHOW_DELAY,
                lambda: self._run_step(OpenStep.SHOW_WINDOW),
            )

    def _run_step(self, step: OpenStep) -> None:
        if not self.session.is_open:
            _LOGGER.debug("Skipping %s; bank already closed", step.value)
            return
        if step is OpenStep.PROBE_SHARED:
            self.probe_shared_store()
        elif step is OpenStep.SHOW_WINDOW and self.session.suppressed:
            self.show_window()

    def probe_shared_store(self) -> bool:
        capacity = self._host.container_num_slots(WARBAND_TAB_IDS[0])
        accessible = bool(capacity)
        self.session.shared_accessible = accessible
        _LOGGER.debug("Warband bank accessible: %s", accessible)
        if accessible and self._settings.auto_scan:
            self._scans.rescan_shared()
            self._on_refresh()
        return accessible

    def on_closed(self) -> None:
        self._scans.flush_bank()
        for call in self._steps.values():
            call.cancel()
        window_shown = self._capabilities.window_shown()
        self.session.reset_bank()
        self._host.set_native_bank_visible(True)
        if window_shown:
            self._notify("Bank connection lost. Showing cached data.")
        self._on_refresh()

    def on_guild_opened(self) -> None:
        self.session.guild_open = True
        self.session.active_store_kind = StoreKind.GUILD
        if self._settings.auto_scan:
            self._scans.schedule_guild_rescan()

    def on_guild_closed(self) -> None:
        self._scans.flush_guild()
        self.session.guild_open = False
        if self.session.active_store_kind is StoreKind.GUILD:
            # Fall back to the bank store still open, if any.
            self.session.active_store_kind = self.session.bank_store_kind
        self._on_refresh()

    def on_combat_entered(self) -> None:
        self.session.in_combat = True

    def on_combat_exited(self) -> None:
        self.session.in_combat = False
        if not self.session.show_pending_after_combat:
            return
        self.session.show_pending_after_combat = False
        if self.session.is_open and self.session.suppressed:
            self.show_window()

    # Window ----------------------------------------------------------------

    def show_window(self) -> bool:
        if self.session.in_combat:
            self.session.show_pending_after_combat = True
            _LOGGER.debug("Window show deferred until combat ends")
            return False
        window = self._capabilities.window
        if window is None:
            return False
        window.show(self.session.active_store_kind.value)
        return True

    def hide_window(self) -> bool:
        if self.session.in_combat:
            _LOGGER.debug("Window hide blocked during combat")
            return False
        window = self._capabilities.window
        if window is None:
            return False
        window.hide()
        return True

    def reset_transient(self) -> None:
        for call in self._steps.values():
            call.cancel()
        self.session.guild_open = False
        self.session.reset_bank()
        self.session.in_combat = self._host.in_combat_lockdown()
        self._host.set_native_bank_visible(True)
