"""Primary entry point for the WarbandLedger plugin."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Optional, Tuple

if __package__:
    from .version import __version__ as WARBAND_LEDGER_VERSION, DEV_MODE_ENV_VAR, is_dev_build
    from .ledger_plugin.capabilities import CapabilityRegistry
    from .ledger_plugin.characters import identity_key
    from .ledger_plugin.engine import LedgerEngine
    from .ledger_plugin.host_api import BankHost
    from .ledger_plugin.saved_variables import SAVED_VARIABLES_FILE, SavedVariables
    from .ledger_plugin.scheduler import DeferredScheduler
    from .ledger_plugin.settings import LedgerSettings
    from .ledger_plugin.slash_commands import build_command_helper
else:  # pragma: no cover - host loads as top-level module
    from version import __version__ as WARBAND_LEDGER_VERSION, DEV_MODE_ENV_VAR, is_dev_build
    from ledger_plugin.capabilities import CapabilityRegistry
    from ledger_plugin.characters import identity_key
    from ledger_plugin.engine import LedgerEngine
    from ledger_plugin.host_api import BankHost
    from ledger_plugin.saved_variables import SAVED_VARIABLES_FILE, SavedVariables
    from ledger_plugin.scheduler import DeferredScheduler
    from ledger_plugin.settings import LedgerSettings
    from ledger_plugin.slash_commands import build_command_helper

PLUGIN_NAME = "WarbandLedger"
PLUGIN_VERSION = WARBAND_LEDGER_VERSION
DEV_BUILD = is_dev_build(WARBAND_LEDGER_VERSION)
LOGGER_NAME = PLUGIN_NAME
LOG_TAG = PLUGIN_NAME

_host_logger: Optional[logging.Logger] = None
_host_log: Optional[Callable[[str], None]] = None
_debug_enabled = False


def _effective_log_level() -> int:
    if _debug_enabled or DEV_BUILD:
        return logging.DEBUG
    if _host_logger is not None:
        return max(logging.DEBUG, _host_logger.getEffectiveLevel())
    return logging.INFO


def _resolve_host_logger() -> Tuple[Optional[logging.Logger], Optional[Callable[[str], None]]]:
    return _host_logger, _host_log


class _HostLogHandler(logging.Handler):
    """Logging bridge that forwards plugin records to the host's log."""

    def emit(self, record: logging.LogRecord) -> None:
        target_level = _effective_log_level()
        plugin_logger = logging.getLogger(LOGGER_NAME)
        if plugin_logger.level != target_level:
            plugin_logger.setLevel(target_level)
        if record.levelno < target_level:
            return
        message = self.format(record)
        host_logger, legacy_log = _resolve_host_logger()
        if host_logger is not None:
            try:
                host_logger.log(max(record.levelno, host_logger.getEffectiveLevel()), message)
                return
            except Exception:
                pass
        if legacy_log is not None:
            try:
                legacy_log(message)
                return
            except Exception:
                pass
        root_logger = logging.getLogger()
        if root_logger.isEnabledFor(record.levelno):
            root_logger.log(record.levelno, message)


def _configure_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(_effective_log_level())
    if not any(getattr(handler, "_ledger_handler", False) for handler in logger.handlers):
        handler = _HostLogHandler()
        handler._ledger_handler = True  # type: ignore[attr-defined]
        formatter = logging.Formatter(f"[%(asctime)s] [{LOG_TAG}] %(message)s", "%H:%M:%S")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.propagate = False
    return logger


LOGGER = _configure_logger()
if DEV_BUILD:
    LOGGER.info(
        "Running WarbandLedger dev build (%s); override via %s=0 to force release behaviour.",
        WARBAND_LEDGER_VERSION,
        DEV_MODE_ENV_VAR,
    )


def _bind_host_logging(host: Any, debug: bool) -> None:
    global _host_logger, _host_log, _debug_enabled
    logger_obj = getattr(host, "logger", None)
    legacy_log = getattr(host, "log", None)
    _host_logger = logger_obj if isinstance(logger_obj, logging.Logger) else None
    _host_log = legacy_log if callable(legacy_log) else None
    _debug_enabled = bool(debug)
    LOGGER.setLevel(_effective_log_level())


def _default_scheduler() -> DeferredScheduler:
    if __package__:
        from .ledger_plugin.qt_scheduler import QtScheduler
    else:  # pragma: no cover - host loads as top-level module
        from ledger_plugin.qt_scheduler import QtScheduler
    return QtScheduler()


class _PluginRuntime:
    """Owns the saved variables, engine and command helper for one login."""

    def __init__(
        self,
        plugin_dir: str,
        host: BankHost,
        scheduler: Optional[DeferredScheduler] = None,
        capabilities: Optional[CapabilityRegistry] = None,
    ) -> None:
        self.plugin_dir = Path(plugin_dir)
        self._host = host
        self._scheduler = scheduler
        self._capabilities = capabilities or CapabilityRegistry()
        self._running = False
        self.saved: Optional[SavedVariables] = None
        self.settings: Optional[LedgerSettings] = None
        self.engine: Optional[LedgerEngine] = None
        self._commands = None

    def start(self) -> str:
        if self._running:
            return PLUGIN_NAME
        identity = None
        try:
            identity = self._host.player_identity()
        except Exception as exc:
            LOGGER.debug("Player identity unavailable at start: %s", exc)
        self.saved = SavedVariables(self.plugin_dir / SAVED_VARIABLES_FILE, identity_key(identity))
        if self.saved.repaired:
            LOGGER.warning("Repaired saved variables: %s", ", ".join(self.saved.repaired))
        self.settings = LedgerSettings.load(self.saved)
        _bind_host_logging(self._host, self.settings.debug_mode)
        scheduler = self._scheduler or _default_scheduler()
        self.engine = LedgerEngine(self._host, self.saved, self.settings, scheduler, capabilities=self._capabilities)
        self._commands = build_command_helper(self.engine, LOGGER)
        self._running = True
        LOGGER.info("WarbandLedger %s started from %s", PLUGIN_VERSION, self.plugin_dir)
        return PLUGIN_NAME

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self.engine is not None:
            self.engine.cancel_pending()
        if self.saved is not None and self.settings is not None:
            self.settings.save(self.saved)
            try:
                self.saved.save()
            except OSError as exc:
                LOGGER.warning("Failed to write saved variables: %s", exc)
        LOGGER.info("WarbandLedger stopped")

    @property
    def running(self) -> bool:
        return self._running

    def handle_signal(self, name: str, *args: Any) -> bool:
        if not self._running or self.engine is None:
            return False
        handled = self.engine.handle_signal(name, *args)
        if self.settings is not None and self.settings.auto_save_changes and name == "SessionClosed":
            try:
                self.saved.save()  # type: ignore[union-attr]
            except OSError as exc:
                LOGGER.warning("Failed to write saved variables: %s", exc)
        return handled

    def handle_command(self, text: str) -> bool:
        if not self._running or self._commands is None:
            return False
        return self._commands.handle_text(text)


_plugin: Optional[_PluginRuntime] = None


def plugin_start(
    plugin_dir: str,
    host: BankHost,
    scheduler: Optional[DeferredScheduler] = None,
    capabilities: Optional[CapabilityRegistry] = None,
) -> str:
    """Host entrypoint: initialise the plugin and start the runtime once."""

    global _plugin
    LOGGER.debug("Initialising WarbandLedger from %s", plugin_dir)
    if _plugin is not None and _plugin.running:
        return PLUGIN_NAME
    _plugin = _PluginRuntime(plugin_dir, host, scheduler, capabilities)
    return _plugin.start()


def plugin_stop() -> None:
    """Host entrypoint: stop the plugin; safe to call when not running."""

    global _plugin
    if _plugin:
        try:
            _plugin.stop()
        finally:
            _plugin = None


def on_signal(name: str, *args: Any) -> bool:
    if _plugin:
        return _plugin.handle_signal(name, *args)
    return False


def slash_command(text: str) -> bool:
    if _plugin:
        return _plugin.handle_command(text)
    return False


def engine() -> Optional[LedgerEngine]:
    return _plugin.engine if _plugin else None


# Metadata expected by some plugin loaders
name = PLUGIN_NAME
plugin_name = PLUGIN_NAME
version = PLUGIN_VERSION
