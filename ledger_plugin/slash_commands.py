"""Slash command parsing for the ``/wl`` chat namespace.

Each token maps to one engine operation. Parsing lives here so :mod:`load`
only forwards raw chat text; the helper receives the operations it needs via
:class:`_LedgerCommandContext` and never touches engine internals.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple


_LOGGER = logging.getLogger("WarbandLedger.Commands")


@dataclass
class _LedgerCommandContext:
    """Lightweight indirection that exposes just the callbacks we need."""

    send_message: Callable[[str], None]
    scan_shared: Optional[Callable[[], Any]] = None
    scan_personal: Optional[Callable[[], Any]] = None
    scan_guild: Optional[Callable[[], Any]] = None
    force_scan: Optional[Callable[[], Any]] = None
    clear_caches: Optional[Callable[[], Any]] = None
    cache_stats: Optional[Callable[[], Dict[str, Any]]] = None
    conflict_status: Optional[Callable[[], List[Dict[str, Any]]]] = None
    reset_conflicts: Optional[Callable[[], Any]] = None
    toggle_favorite: Optional[Callable[[str], Optional[bool]]] = None
    list_characters: Optional[Callable[[], List[str]]] = None
    export_errors: Optional[Callable[[], str]] = None
    emergency_recovery: Optional[Callable[[], Any]] = None
    event_stats: Optional[Callable[[], Dict[str, int]]] = None
    debug_info: Optional[Callable[[], Dict[str, Any]]] = None


def _normalise_prefix(value: str) -> str:
    text = (value or "").strip()
    if not text.startswith("/"):
        text = "/" + text
    return text.lower()


class SlashCommandHelper:
    """Parse ``/wl`` chat input and dispatch ledger commands."""

    def __init__(self, context: _LedgerCommandContext, command_prefix: str = "/wl", aliases: Optional[List[str]] = None) -> None:
        self._ctx = context
        primary = _normalise_prefix(command_prefix or "/wl")
        extras = [_normalise_prefix(alias) for alias in (aliases or []) if alias]
        self._prefixes = [primary] + [alias for alias in extras if alias != primary]
        self._help_text = (
            f"Commands: {primary} scan, scanpersonal, scanguild, forcescan, clearcache, cachestats, "
            "conflicts, resetconflicts, favorite <Name-Realm>, chars, errors, recover, events, debug, help"
        )
        self._actions: Dict[str, Callable[[List[str]], None]] = {
            "scan": lambda args: self._run(self._ctx.scan_shared, "scan"),
            "scanpersonal": lambda args: self._run(self._ctx.scan_personal, "scanpersonal"),
            "scanguild": lambda args: self._run(self._ctx.scan_guild, "scanguild"),
            "forcescan": lambda args: self._run(self._ctx.force_scan, "forcescan"),
            "clearcache": lambda args: self._run(self._ctx.clear_caches, "clearcache", success_message="All caches cleared."),
            "cachestats": self._cache_stats,
            "conflicts": self._conflicts,
            "resetconflicts": lambda args: self._run(
                self._ctx.reset_conflicts, "resetconflicts", success_message="Bank conflict choices reset."
            ),
            "favorite": self._favorite,
            "chars": self._characters,
            "errors": self._errors,
            "recover": lambda args: self._run(self._ctx.emergency_recovery, "recover"),
            "events": self._events,
            "debug": self._debug,
            "help": lambda args: self._emit_help(),
        }

    # Public API ---------------------------------------------------------

    def handle_text(self, text: str) -> bool:
        """Process one line of chat input.

        Returns ``True`` when the line belonged to the ledger namespace.
        """

        if not isinstance(text, str):
            return False
        message = text.strip()
        lowered = message.lower()
        for prefix in self._prefixes:
            if lowered != prefix and not lowered.startswith(prefix + " "):
                continue
            tokens = message[len(prefix) :].split()
            self._dispatch(tokens)
            return True
        return False

    # Implementation details --------------------------------------------

    def _dispatch(self, tokens: List[str]) -> None:
        if not tokens:
            self._emit_help()
            return
        action = tokens[0].lower()
        handler = self._actions.get(action)
        if handler is None:
            _LOGGER.debug("Unknown ledger command: %s", action)
            self._ctx.send_message(f"Unknown command: {action}")
            return
        handler(tokens[1:])

    def _emit_help(self) -> None:
        self._ctx.send_message(self._help_text)

    def _invoke(self, callback: Optional[Callable[..., Any]], label: str, *args: Any) -> Tuple[bool, Any]:
        if callback is None:
            self._ctx.send_message(f"Command '{label}' is unavailable right now.")
            return False, None
        try:
            return True, callback(*args)
        except RuntimeError as exc:
            self._ctx.send_message(f"Command '{label}' failed: {exc}")
        except Exception as exc:  # pragma: no cover - defensive guard
            _LOGGER.warning("Ledger command %s failed: %s", label, exc)
            self._ctx.send_message(f"Command '{label}' failed; see the log for details.")
        return False, None

    def _run(self, callback: Optional[Callable[..., Any]], label: str, *, success_message: Optional[str] = None) -> None:
        ok, _ = self._invoke(callback, label)
        if ok and success_message:
            self._ctx.send_message(success_message)

    def _cache_stats(self, args: List[str]) -> None:
        ok, stats = self._invoke(self._ctx.cache_stats, "cachestats")
        if not ok or stats is None:
            return
        self._ctx.send_message(
            "Cache: {hits} hits, {misses} misses, {invalidations} invalidations, hit rate {hitRate}".format(**stats)
        )

    def _conflicts(self, args: List[str]) -> None:
        ok, rows = self._invoke(self._ctx.conflict_status, "conflicts")
        if not ok:
            return
        if not rows:
            self._ctx.send_message("No bank addon conflicts detected.")
            return
        for row in rows:
            state = "active" if row.get("active") else "inactive"
            self._ctx.send_message(f"{row['name']}: {row['choice']} ({state})")

    def _favorite(self, args: List[str]) -> None:
        if not args:
            self._ctx.send_message("Usage: favorite <Name-Realm>")
            return
        key = " ".join(args)
        ok, state = self._invoke(self._ctx.toggle_favorite, "favorite", key)
        if not ok:
            return
        if state is None:
            self._ctx.send_message(f"No saved character named {key}.")
        else:
            self._ctx.send_message(f"{key} {'added to' if state else 'removed from'} favorites.")

    def _characters(self, args: List[str]) -> None:
        _, lines = self._invoke(self._ctx.list_characters, "chars")
        for line in lines or []:
            self._ctx.send_message(line)

    def _errors(self, args: List[str]) -> None:
        _, report = self._invoke(self._ctx.export_errors, "errors")
        for line in (report or "").splitlines():
            self._ctx.send_message(line)

    def _events(self, args: List[str]) -> None:
        ok, stats = self._invoke(self._ctx.event_stats, "events")
        if not ok or stats is None:
            return
        summary = ", ".join(f"{key}={value}" for key, value in stats.items())
        self._ctx.send_message(f"Event stats: {summary}")

    def _debug(self, args: List[str]) -> None:
        ok, info = self._invoke(self._ctx.debug_info, "debug")
        if not ok or info is None:
            return
        self._ctx.send_message(json.dumps(info, sort_keys=True, default=str))


def build_command_helper(
    engine: object,
    logger: Optional[logging.Logger] = None,
    *,
    command_prefix: str = "/wl",
    aliases: Optional[List[str]] = None,
) -> SlashCommandHelper:
    """Construct a :class:`SlashCommandHelper` bound to ``engine``'s operations."""

    log = logger or _LOGGER

    def _send(text: str) -> None:
        try:
            engine.notify(text)
        except Exception as exc:  # pragma: no cover - defensive guard
            log.warning("Failed to send ledger response '%s': %s", text, exc)

    characters = getattr(engine, "characters", None)
    context = _LedgerCommandContext(
        send_message=_send,
        scan_shared=getattr(engine, "scan_shared_store", None),
        scan_personal=getattr(engine, "scan_personal_store", None),
        scan_guild=getattr(engine, "scan_guild_store", None),
        force_scan=getattr(engine, "force_scan", None),
        clear_caches=getattr(engine, "clear_all_caches", None),
        cache_stats=getattr(engine, "get_cache_stats", None),
        conflict_status=getattr(engine, "get_conflict_status", None),
        reset_conflicts=getattr(engine, "reset_all_conflict_choices", None),
        toggle_favorite=getattr(engine, "toggle_favorite", None),
        list_characters=getattr(characters, "describe", None),
        export_errors=getattr(engine, "export_errors", None),
        emergency_recovery=getattr(engine, "emergency_recovery", None),
        event_stats=getattr(engine, "get_event_stats", None),
        debug_info=getattr(engine, "bank_debug_info", None),
    )
    return SlashCommandHelper(context, command_prefix, aliases=aliases if aliases is not None else ["/warbandledger"])
