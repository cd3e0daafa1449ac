"""Account-wide character registry kept in the global saved variables."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, MutableMapping, Optional

from .cache_store import CacheStore
from .host_api import SafeHost
from .saved_variables import SavedVariables


LOGGER = logging.getLogger("WarbandLedger.Characters")

_IDENTITY_FIELDS = ("name", "realm", "class", "classFile", "level", "faction", "race")


def identity_key(identity: Optional[Mapping[str, Any]]) -> Optional[str]:
    if not identity:
        return None
    name = str(identity.get("name") or "").strip()
    realm = str(identity.get("realm") or "").strip()
    if not name or not realm:
        return None
    return f"{name}-{realm}"


def format_gold(copper: int) -> str:
    gold, remainder = divmod(max(0, int(copper)), 10000)
    silver, copper_left = divmod(remainder, 100)
    return f"{gold:,}g {silver}s {copper_left}c"


class CharacterRegistry:
    def __init__(
        self,
        host: SafeHost,
        saved: SavedVariables,
        cache: CacheStore,
        *,
        wall_clock: Callable[[], float],
        notify: Callable[[str], None],
    ) -> None:
        self._host = host
        self._saved = saved
        self._cache = cache
        self._wall_clock = wall_clock
        self._notify = notify
        self.saved_this_login = False

    @property
    def characters(self) -> MutableMapping[str, Dict[str, Any]]:
        return self._saved.global_["characters"]

    def current_key(self) -> Optional[str]:
        key = identity_key(self._host.player_identity())
        return key or self._saved.identity_key

    def save_current_character(self) -> bool:
        identity = self._host.player_identity()
        key = identity_key(identity)
        if key is None or identity is None:
            LOGGER.debug("Player identity not available yet; character not saved")
            return False
        is_new = "lastSeen" not in self.characters.get(key, {})
        entry = self.characters.setdefault(key, {})
        for field_name in _IDENTITY_FIELDS:
            if field_name in identity:
                entry[field_name] = identity[field_name]
        money = self._host.player_money()
        if money is not None:
            entry["gold"] = money
        entry.setdefault("gold", 0)
        entry.setdefault("isFavorite", False)
        entry["lastSeen"] = self._wall_clock()
        self._saved.set_identity(key)
        self._saved.char["lastKnownGold"] = entry["gold"]
        self._cache.invalidate("characters")
        self.saved_this_login = True
        if is_new:
            self._notify(f"{entry.get('name', key)} registered.")
        LOGGER.debug("Character %s saved (new=%s)", key, is_new)
        return True

    def update_gold(self) -> Optional[int]:
        key = self.current_key()
        money = self._host.player_money()
        if key is None or money is None or key not in self.characters:
            return None
        self.characters[key]["gold"] = money
        self._saved.set_identity(key)
        self._saved.char["lastKnownGold"] = money
        self._cache.invalidate("characters")
        return money

    def toggle_favorite(self, key: str) -> Optional[bool]:
        entry = self.characters.get(key)
        if entry is None:
            return None
        entry["isFavorite"] = not bool(entry.get("isFavorite"))
        self._cache.invalidate("characters")
        return entry["isFavorite"]

    def list_characters(self) -> List[Dict[str, Any]]:
        def _build() -> List[Dict[str, Any]]:
            rows = [dict(entry, key=key) for key, entry in self.characters.items()]
            rows.sort(
                key=lambda row: (
                    not row.get("isFavorite", False),
                    -int(row.get("level") or 0),
                    str(row.get("name") or row["key"]),
                )
            )
            return rows

        return self._cache.get_or_build("characters", "list", _build)

    def describe(self) -> List[str]:
        rows = self.list_characters()
        if not rows:
            return ["No characters saved yet."]
        lines = [f"Saved characters ({len(rows)}):"]
        total = 0
        for row in rows:
            gold = int(row.get("gold") or 0)
            total += gold
            star = "* " if row.get("isFavorite") else ""
            lines.append(f"{star}{row['key']} (level {row.get('level', '?')} {row.get('class', '')}) {format_gold(gold)}".rstrip())
        lines.append(f"Total gold: {format_gold(total)}")
        return lines
