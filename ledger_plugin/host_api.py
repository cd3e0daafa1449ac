"""Interfaces to the host client that owns the bank UI and container APIs."""
from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Protocol


_LOGGER = logging.getLogger("WarbandLedger.Host")


class LedgerError(Exception):
    """Base class for engine errors."""


class HostQueryUnavailable(LedgerError):
    """Raised by hosts when a container or item query has nothing to report."""


class BankHost(Protocol):
    """Queries and actions the embedding client provides.

    Query methods may return ``None`` or raise :class:`HostQueryUnavailable`
    when the answer is not available right now. Action methods return ``False``
    or raise when they did not take effect.
    """

    def container_num_slots(self, container_id: int) -> Optional[int]: ...

    def container_item_info(self, container_id: int, slot: int) -> Optional[Mapping[str, Any]]: ...

    def item_info(self, item_id: int) -> Optional[Mapping[str, Any]]: ...

    def deposited_money(self) -> Optional[int]: ...

    def player_money(self) -> Optional[int]: ...

    def player_identity(self) -> Optional[Mapping[str, Any]]: ...

    def selected_bank_tab(self) -> Optional[int]: ...

    def in_combat_lockdown(self) -> bool: ...

    def is_addon_loaded(self, name: str) -> bool: ...

    def addon_option(self, name: str, option: str) -> Any: ...

    def set_addon_option(self, name: str, option: str, value: Any) -> bool: ...

    def set_addon_enabled(self, name: str, enabled: bool) -> bool: ...

    def set_native_bank_visible(self, visible: bool) -> None: ...

    def reload_ui(self) -> None: ...

    def guild_name(self) -> Optional[str]: ...

    def guild_bank_num_tabs(self) -> Optional[int]: ...

    def guild_bank_tab_info(self, tab: int) -> Optional[Mapping[str, Any]]: ...

    def guild_bank_item(self, tab: int, slot: int) -> Optional[Mapping[str, Any]]: ...

    def print_message(self, text: str) -> None: ...


class SafeHost:
    """Wrap a :class:`BankHost` so that queries degrade to ``None``.

    An unavailable answer means "skip this unit of work"; it is logged at debug
    level and never propagates into the engine.
    """

    def __init__(self, host: BankHost, logger: Optional[logging.Logger] = None) -> None:
        self._host = host
        self._logger = logger or _LOGGER

    @property
    def raw(self) -> BankHost:
        return self._host

    def _query(self, name: str, *args: Any) -> Any:
        method = getattr(self._host, name, None)
        if method is None:
            return None
        try:
            return method(*args)
        except HostQueryUnavailable:
            self._logger.debug("Host query %s%r unavailable", name, args)
        except Exception as exc:
            self._logger.debug("Host query %s%r failed: %s", name, args, exc, exc_info=exc)
        return None

    def _action(self, name: str, *args: Any) -> bool:
        method = getattr(self._host, name, None)
        if method is None:
            self._logger.debug("Host does not support %s", name)
            return False
        try:
            result = method(*args)
        except Exception as exc:
            self._logger.warning("Host action %s%r failed: %s", name, args, exc)
            return False
        return result is None or bool(result)

    # Queries -------------------------------------------------------------

    def container_num_slots(self, container_id: int) -> Optional[int]:
        value = self._query("container_num_slots", container_id)
        if value is None:
            return None
        try:
            count = int(value)
        except (TypeError, ValueError):
            return None
        return max(0, count)

    def container_item_info(self, container_id: int, slot: int) -> Optional[Mapping[str, Any]]:
        info = self._query("container_item_info", container_id, slot)
        if not isinstance(info, Mapping) or not info.get("itemID"):
            return None
        return info

    def item_info(self, item_id: int) -> Dict[str, Any]:
        info = self._query("item_info", item_id)
        return dict(info) if isinstance(info, Mapping) else {}

    def deposited_money(self) -> Optional[int]:
        return _optional_int(self._query("deposited_money"))

    def player_money(self) -> Optional[int]:
        return _optional_int(self._query("player_money"))

    def player_identity(self) -> Optional[Mapping[str, Any]]:
        identity = self._query("player_identity")
        return identity if isinstance(identity, Mapping) else None

    def selected_bank_tab(self) -> Optional[int]:
        return _optional_int(self._query("selected_bank_tab"))

    def in_combat_lockdown(self) -> bool:
        return bool(self._query("in_combat_lockdown"))

    def is_addon_loaded(self, name: str) -> bool:
        return bool(self._query("is_addon_loaded", name))

    def addon_option(self, name: str, option: str) -> Any:
        return self._query("addon_option", name, option)

    def guild_name(self) -> Optional[str]:
        name = self._query("guild_name")
        return str(name) if name else None

    def guild_bank_num_tabs(self) -> Optional[int]:
        return _optional_int(self._query("guild_bank_num_tabs"))

    def guild_bank_tab_info(self, tab: int) -> Optional[Mapping[str, Any]]:
        info = self._query("guild_bank_tab_info", tab)
        return info if isinstance(info, Mapping) else None

    def guild_bank_item(self, tab: int, slot: int) -> Optional[Mapping[str, Any]]:
        info = self._query("guild_bank_item", tab, slot)
        if not isinstance(info, Mapping) or not info.get("itemID"):
            return None
        return info

    # Actions -------------------------------------------------------------

    def set_addon_option(self, name: str, option: str, value: Any) -> bool:
        return self._action("set_addon_option", name, option, value)

    def set_addon_enabled(self, name: str, enabled: bool) -> bool:
        return self._action("set_addon_enabled", name, enabled)

    def set_native_bank_visible(self, visible: bool) -> bool:
        return self._action("set_native_bank_visible", visible)

    def reload_ui(self) -> bool:
        return self._action("reload_ui")

    def print_message(self, text: str) -> None:
        if not self._action("print_message", text):
            self._logger.info("%s", text)


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
