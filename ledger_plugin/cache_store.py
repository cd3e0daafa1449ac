"""Primary snapshots plus short-lived derived caches."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from .saved_variables import SavedVariables
from .snapshots import ItemRecord, StoreSnapshot


LOGGER = logging.getLogger("WarbandLedger.Cache")

CATEGORY_TTLS: Dict[str, float] = {
    "items": 30.0,
    "aggregate": 30.0,
    "search": 60.0,
    "tooltip": 30.0,
    "characters": 300.0,
}
DERIVED_CATEGORIES: Tuple[str, ...] = ("items", "aggregate", "search", "tooltip")
DEFAULT_DERIVED_TTL = 30.0

STORE_WARBAND = "warband"
STORE_PERSONAL = "personal"
STORE_GUILD = "guild"


@dataclass
class _Entry:
    value: Any
    expires_at: float


class CacheStore:
    """Owns store snapshots in the saved variables and derived lookups.

    Snapshots are only ever replaced as a whole. Derived entries expire after
    their category TTL and are dropped explicitly whenever a snapshot changes.
    """

    def __init__(
        self,
        saved: SavedVariables,
        clock: Callable[[], float],
        *,
        default_ttl: float = 30.0,
        ttls: Optional[Mapping[str, float]] = None,
    ) -> None:
        self._saved = saved
        self._clock = clock
        self._default_ttl = float(default_ttl)
        self._ttls: Dict[str, float] = dict(CATEGORY_TTLS)
        # Derived lookups follow the configured TTL, keeping their relative lifetimes.
        scale = self._default_ttl / DEFAULT_DERIVED_TTL
        for category in DERIVED_CATEGORIES:
            self._ttls[category] = CATEGORY_TTLS[category] * scale
        if ttls:
            self._ttls.update({key: float(value) for key, value in ttls.items()})
        self._entries: Dict[str, Dict[Any, _Entry]] = {}
        self._hits = 0
        self._misses = 0
        self._invalidations = 0
        self._evictions = 0

    # Snapshots -----------------------------------------------------------

    def warband_snapshot(self) -> StoreSnapshot:
        return StoreSnapshot.from_dict(self._saved.global_.get("warbandBank"))

    def personal_snapshot(self, identity_key: str) -> StoreSnapshot:
        entry = self._saved.global_["characters"].get(identity_key) or {}
        return StoreSnapshot.from_dict(entry.get("personalBank"))

    def guild_snapshot(self, guild_name: str) -> StoreSnapshot:
        return StoreSnapshot.from_dict(self._saved.global_["guildBank"].get(guild_name))

    def replace_snapshot(self, store: str, snapshot: StoreSnapshot, owner: Optional[str] = None) -> None:
        payload = snapshot.to_dict()
        if store == STORE_WARBAND:
            self._saved.global_["warbandBank"] = payload
        elif store == STORE_PERSONAL:
            if not owner:
                raise ValueError("personal snapshots need an owning identity")
            entry = self._saved.global_["characters"].setdefault(owner, {})
            entry["personalBank"] = payload
        elif store == STORE_GUILD:
            if not owner:
                raise ValueError("guild snapshots need a guild name")
            self._saved.global_["guildBank"][owner] = payload
        else:
            raise ValueError(f"unknown store: {store}")
        LOGGER.debug(
            "Replaced %s snapshot%s: %d/%d slots used",
            store,
            f" for {owner}" if owner else "",
            snapshot.used_slots,
            snapshot.total_slots,
        )
        self.invalidate_derived()

    # Derived caches ------------------------------------------------------

    def ttl_for(self, category: str) -> float:
        return self._ttls.get(category, self._default_ttl)

    def get(self, category: str, key: Any) -> Optional[Any]:
        bucket = self._entries.get(category)
        entry = bucket.get(key) if bucket else None
        if entry is None:
            self._misses += 1
            return None
        if entry.expires_at <= self._clock():
            del bucket[key]
            self._evictions += 1
            self._misses += 1
            return None
        self._hits += 1
        return entry.value

    def set(self, category: str, key: Any, value: Any, ttl: Optional[float] = None) -> None:
        lifetime = self.ttl_for(category) if ttl is None else float(ttl)
        self._entries.setdefault(category, {})[key] = _Entry(value, self._clock() + lifetime)

    def get_or_build(self, category: str, key: Any, builder: Callable[[], Any]) -> Any:
        value = self.get(category, key)
        if value is None:
            value = builder()
            self.set(category, key, value)
        return value

    def invalidate(self, category: str, key: Any = None) -> int:
        bucket = self._entries.get(category)
        if not bucket:
            return 0
        if key is None:
            removed = len(bucket)
            bucket.clear()
        else:
            removed = 1 if bucket.pop(key, None) is not None else 0
        if removed:
            self._invalidations += 1
        return removed

    def invalidate_derived(self) -> None:
        for category in DERIVED_CATEGORIES:
            self.invalidate(category)

    def cleanup_expired(self) -> int:
        now = self._clock()
        removed = 0
        for bucket in self._entries.values():
            for key in [key for key, entry in bucket.items() if entry.expires_at <= now]:
                del bucket[key]
                removed += 1
        self._evictions += removed
        return removed

    def clear_all(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        self._invalidations = 0
        self._evictions = 0
        LOGGER.debug("All derived caches cleared")

    def stats(self) -> Dict[str, Any]:
        lookups = self._hits + self._misses
        hit_rate = (self._hits / lookups * 100.0) if lookups else 0.0
        return {
            "hits": self._hits,
            "misses": self._misses,
            "invalidations": self._invalidations,
            "evictions": self._evictions,
            "hitRate": f"{hit_rate:.1f}%",
            "entries": {category: len(bucket) for category, bucket in self._entries.items() if bucket},
        }

    # Derived lookups -----------------------------------------------------

    def _all_records(self) -> Iterator[Tuple[str, ItemRecord]]:
        for _, _, record in self.warband_snapshot().iter_items():
            yield "warband", record
        for key in sorted(self._saved.global_["characters"]):
            for _, _, record in self.personal_snapshot(key).iter_items():
                yield key, record

    def aggregate_counts(self) -> Dict[int, int]:
        def _build() -> Dict[int, int]:
            totals: Dict[int, int] = {}
            for _, record in self._all_records():
                totals[record.item_id] = totals.get(record.item_id, 0) + record.stack_count
            return totals

        return self.get_or_build("aggregate", "all", _build)

    def search(self, term: str) -> List[ItemRecord]:
        needle = (term or "").strip().lower()
        if not needle:
            return []

        def _build() -> List[ItemRecord]:
            seen: Dict[int, ItemRecord] = {}
            for _, record in self._all_records():
                if record.name and needle in record.name.lower():
                    seen.setdefault(record.item_id, record)
            return sorted(seen.values(), key=lambda record: (record.name or "", record.item_id))

        return self.get_or_build("search", needle, _build)

    def item_locations(self, item_id: int) -> Dict[str, int]:
        def _build() -> Dict[str, int]:
            locations: Dict[str, int] = {}
            for owner, record in self._all_records():
                if record.item_id == item_id:
                    locations[owner] = locations.get(owner, 0) + record.stack_count
            return locations

        return self.get_or_build("tooltip", item_id, _build)
