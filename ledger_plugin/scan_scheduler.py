"""Debounced rescans driven by batched container-change signals."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional

from .cache_store import STORE_GUILD, STORE_PERSONAL, STORE_WARBAND, CacheStore
from .host_api import SafeHost
from .scanner import (
    CARRIED_BAG_IDS,
    PERSONAL_BANK_IDS,
    WARBAND_TAB_IDS,
    scan_guild_bank,
    scan_personal_bank,
    scan_warband_bank,
)
from .scheduler import GUILD_RESCAN_DELAY, RESCAN_DEBOUNCE_DELAY, DebouncedCall, DeferredScheduler, EventStats
from .session import Session
from .snapshots import StoreSnapshot


_LOGGER = logging.getLogger("WarbandLedger.Scans")


@dataclass(frozen=True)
class SlotClassification:
    shared: bool = False
    personal: bool = False
    carried: bool = False

    @property
    def any(self) -> bool:
        return self.shared or self.personal or self.carried


def classify_containers(container_ids: Iterable[int]) -> SlotClassification:
    shared = personal = carried = False
    for raw in container_ids:
        try:
            container_id = int(raw)
        except (TypeError, ValueError):
            continue
        if container_id in WARBAND_TAB_IDS:
            shared = True
        if container_id in PERSONAL_BANK_IDS:
            personal = True
        if container_id in CARRIED_BAG_IDS:
            carried = True
    return SlotClassification(shared=shared, personal=personal, carried=carried)


class ScanScheduler:
    """Coalesces change bursts into one rescan per store family."""

    def __init__(
        self,
        session: Session,
        host: SafeHost,
        cache: CacheStore,
        scheduler: DeferredScheduler,
        *,
        identity: Callable[[], Optional[str]],
        wall_clock: Callable[[], float],
        on_refresh: Callable[[], None],
        stats: Optional[EventStats] = None,
    ) -> None:
        self._session = session
        self._host = host
        self._cache = cache
        self._identity = identity
        self._wall_clock = wall_clock
        self._on_refresh = on_refresh
        self._bank = DebouncedCall(scheduler, "rescan:bank", stats)
        self._guild = DebouncedCall(scheduler, "rescan:guild", stats)
        self.rescan_count = 0

    def pending(self) -> Dict[str, bool]:
        return {"bank": self._bank.pending, "guild": self._guild.pending}

    # Signals ---------------------------------------------------------------

    def on_slots_changed(self, container_ids: Iterable[int]) -> bool:
        if not self._session.is_open:
            return False
        classification = classify_containers(container_ids)
        if not classification.any:
            return False
        _LOGGER.debug("Container change %s; debouncing bank rescan", classification)
        self._bank.schedule(RESCAN_DEBOUNCE_DELAY, self._run_bank_rescan)
        return True

    def on_guild_slots_changed(self) -> bool:
        if not self._session.guild_open:
            return False
        self.schedule_guild_rescan()
        return True

    def schedule_guild_rescan(self) -> None:
        self._guild.schedule(GUILD_RESCAN_DELAY, self._run_guild_rescan)

    def _run_bank_rescan(self) -> None:
        self.rescan_count += 1
        if self._session.shared_accessible:
            self.rescan_shared()
        if self._session.is_open:
            self.rescan_personal()
        self._cache.invalidate_derived()
        self._on_refresh()

    def _run_guild_rescan(self) -> None:
        if self._session.guild_open:
            self.rescan_guild()
        self._cache.invalidate_derived()
        self._on_refresh()

    def flush_bank(self) -> bool:
        """Run a pending bank rescan immediately, before the session closes."""

        if not self._bank.cancel():
            return False
        self._run_bank_rescan()
        return True

    def flush_guild(self) -> bool:
        if not self._guild.cancel():
            return False
        self._run_guild_rescan()
        return True

    def cancel_all(self) -> None:
        self._bank.cancel()
        self._guild.cancel()

    # Scans -----------------------------------------------------------------

    def rescan_shared(self) -> Optional[StoreSnapshot]:
        previous = self._cache.warband_snapshot()
        snapshot = scan_warband_bank(self._host, now=self._wall_clock(), previous_gold=previous.gold)
        if snapshot is None:
            _LOGGER.debug("Warband bank not enumerable; keeping last snapshot")
            return None
        self._cache.replace_snapshot(STORE_WARBAND, snapshot)
        return snapshot

    def rescan_personal(self) -> Optional[StoreSnapshot]:
        owner = self._identity()
        if not owner:
            _LOGGER.debug("No character identity yet; personal bank scan skipped")
            return None
        snapshot = scan_personal_bank(self._host, now=self._wall_clock())
        if snapshot is None:
            _LOGGER.debug("Personal bank not enumerable; keeping last snapshot")
            return None
        self._cache.replace_snapshot(STORE_PERSONAL, snapshot, owner=owner)
        return snapshot

    def rescan_guild(self) -> Optional[StoreSnapshot]:
        guild = self._host.guild_name()
        if not guild:
            return None
        previous = self._cache.guild_snapshot(guild)
        snapshot = scan_guild_bank(self._host, now=self._wall_clock(), previous_gold=previous.gold)
        if snapshot is None:
            return None
        self._cache.replace_snapshot(STORE_GUILD, snapshot, owner=guild)
        return snapshot
