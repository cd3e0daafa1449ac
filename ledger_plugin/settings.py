"""User settings stored in the profile scope of the saved variables."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, MutableMapping, Optional

from .saved_variables import SavedVariables


LOGGER = logging.getLogger("WarbandLedger.Settings")

CACHE_TTL_MIN = 5
CACHE_TTL_MAX = 600
DEFAULT_CACHE_TTL = 30


def _coerce_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        token = value.strip().lower()
        if token in {"1", "true", "yes", "on"}:
            return True
        if token in {"0", "false", "no", "off"}:
            return False
    return default


def _coerce_int(value: Any, default: int, *, minimum: Optional[int] = None, maximum: Optional[int] = None) -> int:
    try:
        numeric = int(value)
    except (TypeError, ValueError):
        numeric = default
    if minimum is not None:
        numeric = max(minimum, numeric)
    if maximum is not None:
        numeric = min(maximum, numeric)
    return numeric


@dataclass
class LedgerSettings:
    """Settings exposed to the options panel and slash commands."""

    enabled: bool = True
    debug_mode: bool = False
    auto_scan: bool = True
    auto_open_window: bool = True
    replace_default_bank: bool = True
    auto_save_changes: bool = True
    show_login_message: bool = True
    cache_ttl_seconds: int = DEFAULT_CACHE_TTL

    @classmethod
    def load(cls, saved: SavedVariables) -> "LedgerSettings":
        settings = cls()
        settings.apply(saved.profile.get("settings") or {})
        return settings

    def apply(self, data: Mapping[str, Any]) -> None:
        self.enabled = _coerce_bool(data.get("enabled"), self.enabled)
        self.debug_mode = _coerce_bool(data.get("debugMode"), self.debug_mode)
        self.auto_scan = _coerce_bool(data.get("autoScan"), self.auto_scan)
        self.auto_open_window = _coerce_bool(data.get("autoOpenWindow"), self.auto_open_window)
        self.replace_default_bank = _coerce_bool(data.get("replaceDefaultBank"), self.replace_default_bank)
        self.auto_save_changes = _coerce_bool(data.get("autoSaveChanges"), self.auto_save_changes)
        self.show_login_message = _coerce_bool(data.get("showLoginMessage"), self.show_login_message)
        self.cache_ttl_seconds = _coerce_int(
            data.get("cacheTtlSeconds"),
            self.cache_ttl_seconds,
            minimum=CACHE_TTL_MIN,
            maximum=CACHE_TTL_MAX,
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "enabled": bool(self.enabled),
            "debugMode": bool(self.debug_mode),
            "autoScan": bool(self.auto_scan),
            "autoOpenWindow": bool(self.auto_open_window),
            "replaceDefaultBank": bool(self.replace_default_bank),
            "autoSaveChanges": bool(self.auto_save_changes),
            "showLoginMessage": bool(self.show_login_message),
            "cacheTtlSeconds": int(self.cache_ttl_seconds),
        }

    def save(self, saved: SavedVariables) -> None:
        profile: MutableMapping[str, Any] = saved.profile
        profile["settings"] = self.as_dict()
        LOGGER.debug("Settings stored in profile: %s", profile["settings"])
