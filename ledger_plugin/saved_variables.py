"""JSON-backed saved variables with global, profile and per-character scopes."""
from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, MutableMapping, Optional


SAVED_VARIABLES_FILE = "WarbandLedgerDB.json"
DEFAULT_PROFILE = "Default"
_DB_VERSION = 1

LOGGER = logging.getLogger("WarbandLedger.SavedVariables")


def empty_snapshot() -> Dict[str, Any]:
    return {"items": {}, "gold": 0, "lastScan": 0, "totalSlots": 0, "usedSlots": 0}


def _global_defaults() -> Dict[str, Any]:
    return {
        "warbandBank": empty_snapshot(),
        "characters": {},
        "guildBank": {},
    }


def _profile_defaults() -> Dict[str, Any]:
    return {
        "bankConflictChoices": {},
        "toggledAddons": {},
        "bankModuleEnabled": True,
        "settings": {},
    }


def _char_defaults() -> Dict[str, Any]:
    return {"lastKnownGold": 0}


def _is_snapshot(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    if not isinstance(value.get("items"), dict):
        return False
    return all(isinstance(tab, dict) for tab in value["items"].values())


def _is_str_map(value: Any) -> bool:
    return isinstance(value, dict) and all(isinstance(v, str) for v in value.values())


_Validator = Callable[[Any], bool]

_GLOBAL_VALIDATORS: Dict[str, _Validator] = {
    "warbandBank": _is_snapshot,
    "characters": lambda value: isinstance(value, dict) and all(isinstance(v, dict) for v in value.values()),
    "guildBank": lambda value: isinstance(value, dict) and all(_is_snapshot(v) for v in value.values()),
}

_PROFILE_VALIDATORS: Dict[str, _Validator] = {
    "bankConflictChoices": _is_str_map,
    "toggledAddons": _is_str_map,
    "bankModuleEnabled": lambda value: isinstance(value, bool),
    "settings": lambda value: isinstance(value, dict),
}

_CHAR_VALIDATORS: Dict[str, _Validator] = {
    "lastKnownGold": lambda value: isinstance(value, int) and not isinstance(value, bool),
}


class SavedVariables:
    """Three-scope persisted store.

    ``global_`` is shared by every character on the account, ``profile`` holds
    the installation's settings and conflict choices, and ``char`` is keyed by
    the active ``Name-Realm`` identity. Callers mutate the returned mappings in
    place and call :meth:`save`.
    """

    def __init__(self, path: Path, identity_key: Optional[str] = None, *, profile: str = DEFAULT_PROFILE) -> None:
        self._path = Path(path)
        self._profile_name = profile
        self._identity_key = identity_key
        self._data: Dict[str, Any] = self._default_document()
        self.repaired: List[str] = []
        self._load()

    @staticmethod
    def _default_document() -> Dict[str, Any]:
        return {"version": _DB_VERSION, "global": _global_defaults(), "profiles": {}, "char": {}}

    @property
    def path(self) -> Path:
        return self._path

    @property
    def identity_key(self) -> Optional[str]:
        return self._identity_key

    def set_identity(self, identity_key: Optional[str]) -> None:
        self._identity_key = identity_key
        if identity_key:
            self._ensure_scope(self._data["char"], identity_key, _char_defaults, _CHAR_VALIDATORS, f"char[{identity_key}]")

    @property
    def global_(self) -> MutableMapping[str, Any]:
        return self._data["global"]

    @property
    def profile(self) -> MutableMapping[str, Any]:
        return self._ensure_scope(
            self._data["profiles"], self._profile_name, _profile_defaults, _PROFILE_VALIDATORS, "profile"
        )

    @property
    def char(self) -> MutableMapping[str, Any]:
        if not self._identity_key:
            raise RuntimeError("No character identity is active")
        return self._ensure_scope(
            self._data["char"], self._identity_key, _char_defaults, _CHAR_VALIDATORS, f"char[{self._identity_key}]"
        )

    # Persistence ---------------------------------------------------------

    def _load(self) -> None:
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as exc:
            LOGGER.warning("Saved variables at %s are unreadable (%s); starting from defaults.", self._path, exc)
            self.repaired.append("<document>")
            return
        if not isinstance(raw, dict):
            LOGGER.warning("Saved variables at %s are not an object; starting from defaults.", self._path)
            self.repaired.append("<document>")
            return
        for scope in ("global", "profiles", "char"):
            value = raw.get(scope)
            if value is None:
                continue
            if isinstance(value, dict):
                self._data[scope] = value
            else:
                LOGGER.warning("Saved variables scope '%s' is malformed; resetting it.", scope)
                self.repaired.append(scope)
        self.repair()

    def repair(self) -> List[str]:
        """Reset malformed substructures to their defaults, one at a time."""

        repaired: List[str] = []
        repaired.extend(self._repair_scope(self._data["global"], _global_defaults, _GLOBAL_VALIDATORS, "global"))
        for name, profile in list(self._data["profiles"].items()):
            if not isinstance(profile, dict):
                self._data["profiles"][name] = _profile_defaults()
                repaired.append(f"profiles[{name}]")
                continue
            repaired.extend(self._repair_scope(profile, _profile_defaults, _PROFILE_VALIDATORS, f"profiles[{name}]"))
        for name, scope in list(self._data["char"].items()):
            if not isinstance(scope, dict):
                self._data["char"][name] = _char_defaults()
                repaired.append(f"char[{name}]")
                continue
            repaired.extend(self._repair_scope(scope, _char_defaults, _CHAR_VALIDATORS, f"char[{name}]"))
        for key in repaired:
            LOGGER.warning("Saved variables substructure %s was malformed; reset to default.", key)
        self.repaired.extend(repaired)
        return repaired

    @staticmethod
    def _repair_scope(
        scope: MutableMapping[str, Any],
        defaults_factory: Callable[[], Dict[str, Any]],
        validators: Mapping[str, _Validator],
        label: str,
    ) -> List[str]:
        repaired: List[str] = []
        defaults = defaults_factory()
        for key, default in defaults.items():
            if key not in scope:
                scope[key] = default
                continue
            validator = validators.get(key)
            if validator is not None and not validator(scope[key]):
                scope[key] = default
                repaired.append(f"{label}.{key}")
        return repaired

    def _ensure_scope(
        self,
        container: MutableMapping[str, Any],
        key: str,
        defaults_factory: Callable[[], Dict[str, Any]],
        validators: Mapping[str, _Validator],
        label: str,
    ) -> MutableMapping[str, Any]:
        scope = container.get(key)
        if not isinstance(scope, dict):
            scope = defaults_factory()
            container[key] = scope
        else:
            self._repair_scope(scope, defaults_factory, validators, label)
        return scope

    def save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        payload = json.dumps(self._data, indent=2, sort_keys=True)
        tmp_path.write_text(payload, encoding="utf-8")
        os.replace(tmp_path, self._path)
        LOGGER.debug("Saved variables written to %s", self._path)

    def reset_all_data(self) -> None:
        self._data = self._default_document()
        if self._identity_key:
            self.set_identity(self._identity_key)

    def snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)
