"""Detection and one-at-a-time resolution of competing bank UI addons.

Several popular inventory addons also take over the bank frame. When one of
them is active the user has to pick an owner: keep this plugin's bank UI
(``useHost``, the competitor is disabled) or keep the competitor
(``useOther``, this plugin drops to background scanning). Choices persist in
the profile. Only one decision prompt is ever outstanding; further conflicts
wait in a FIFO queue and are shown after a short delay.
"""
from __future__ import annotations

import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, MutableMapping, Optional

from .capabilities import CapabilityRegistry
from .host_api import LedgerError, SafeHost
from .saved_variables import SavedVariables
from .scheduler import (
    CONFLICT_CHECK_THROTTLE,
    CONFLICT_NEXT_DELAY,
    DebouncedCall,
    DeferredScheduler,
    EventStats,
    Throttle,
)


_LOGGER = logging.getLogger("WarbandLedger.Conflicts")

CHOICE_USE_HOST = "useHost"
CHOICE_USE_OTHER = "useOther"
CHOICE_UNRESOLVED = "unresolved"
VALID_CHOICES = (CHOICE_USE_HOST, CHOICE_USE_OTHER)

KNOWN_BANK_ADDONS = (
    "Bagnon",
    "Combuctor",
    "ArkInventory",
    "AdiBags",
    "BetterBags",
    "Baganator",
    "Sorted",
    "LiteBag",
)

_CHECK_KEY = "conflict-check"
MAX_RECORDED_FAILURES = 20


class ConflictActionFailed(LedgerError):
    """The host did not apply an enable/disable request for a competitor."""


class ConflictDetector:
    """Treats the whole addon as the competing bank UI."""

    def __init__(self, name: str) -> None:
        self.name = name

    def is_active(self, host: SafeHost) -> bool:
        return host.is_addon_loaded(self.name)

    def disable(self, host: SafeHost) -> bool:
        return host.set_addon_enabled(self.name, False)

    def enable(self, host: SafeHost) -> bool:
        return host.set_addon_enabled(self.name, True)

    def manual_action(self, enable: bool) -> str:
        verb = "Enable" if enable else "Disable"
        return f"{verb} {self.name} in the AddOns list and type /reload."

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class SubFeatureConflictDetector(ConflictDetector):
    """Conflicts only while one module of a larger UI suite is switched on."""

    def __init__(self, name: str, option: str, feature_label: str) -> None:
        super().__init__(name)
        self.option = option
        self.feature_label = feature_label

    def is_active(self, host: SafeHost) -> bool:
        if not host.is_addon_loaded(self.name):
            return False
        value = host.addon_option(self.name, self.option)
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)

    def disable(self, host: SafeHost) -> bool:
        return host.set_addon_option(self.name, self.option, False)

    def enable(self, host: SafeHost) -> bool:
        return host.set_addon_option(self.name, self.option, True)

    def manual_action(self, enable: bool) -> str:
        verb = "Enable" if enable else "Disable"
        return f"{verb} the {self.feature_label} module in {self.name}'s options and type /reload."


def default_detectors() -> List[ConflictDetector]:
    detectors: List[ConflictDetector] = [ConflictDetector(name) for name in KNOWN_BANK_ADDONS]
    detectors.append(SubFeatureConflictDetector("ElvUI", "bags.enable", "Bags"))
    return detectors


class ConflictRegistry:
    """Owns conflict choices, the decision queue and its processing flag."""

    def __init__(
        self,
        host: SafeHost,
        saved: SavedVariables,
        scheduler: DeferredScheduler,
        capabilities: CapabilityRegistry,
        *,
        notify: Callable[[str], None],
        stats: Optional[EventStats] = None,
        detectors: Optional[Iterable[ConflictDetector]] = None,
    ) -> None:
        self._host = host
        self._saved = saved
        self._capabilities = capabilities
        self._notify = notify
        self._detectors: Dict[str, ConflictDetector] = {}
        for detector in detectors if detectors is not None else default_detectors():
            self._detectors[detector.name] = detector
        self._queue: Deque[str] = deque()
        self.is_processing = False
        self.current: Optional[str] = None
        self.reload_required = False
        self.failures: Deque[str] = deque(maxlen=MAX_RECORDED_FAILURES)
        self._next_prompt = DebouncedCall(scheduler, "conflict-next", stats)
        self._recheck = DebouncedCall(scheduler, "conflict-recheck", stats)
        self._throttle = Throttle(scheduler, CONFLICT_CHECK_THROTTLE, stats)

    # Persisted state ------------------------------------------------------

    @property
    def choices(self) -> MutableMapping[str, str]:
        return self._saved.profile["bankConflictChoices"]

    @property
    def toggled_addons(self) -> MutableMapping[str, str]:
        return self._saved.profile["toggledAddons"]

    def choice_for(self, name: str) -> str:
        return self.choices.get(name, CHOICE_UNRESOLVED)

    def is_using_other(self) -> bool:
        return any(choice == CHOICE_USE_OTHER for choice in self.choices.values())

    @property
    def queue(self) -> List[str]:
        return list(self._queue)

    @property
    def detectors(self) -> Mapping[str, ConflictDetector]:
        return self._detectors

    # Detection ------------------------------------------------------------

    def detect(self) -> List[str]:
        return [name for name, detector in self._detectors.items() if detector.is_active(self._host)]

    def check_conflicts(self) -> List[str]:
        """Enqueue every active competitor that still needs a decision."""

        enqueued: List[str] = []
        for name in self.detect():
            choice = self.choice_for(name)
            if choice == CHOICE_USE_OTHER:
                continue
            if choice == CHOICE_USE_HOST:
                _LOGGER.info("%s is still active although this plugin owns the bank UI; asking again.", name)
            if self.enqueue(name):
                enqueued.append(name)
        if enqueued:
            _LOGGER.debug("Conflict queue now: %s", ", ".join(self._queue))
        self.show_next()
        return enqueued

    def request_check(self, delay: float = 0.0) -> None:
        """Run a throttled conflict check now or after ``delay`` seconds."""

        if delay > 0:
            self._recheck.schedule(delay, self._throttled_check)
        else:
            self._throttled_check()

    def _throttled_check(self) -> None:
        if self._throttle.allow(_CHECK_KEY):
            self.check_conflicts()
            return
        remaining = self._throttle.remaining(_CHECK_KEY)
        self._recheck.schedule(remaining, self._throttled_check)

    # Queue ----------------------------------------------------------------

    def enqueue(self, name: str) -> bool:
        if name == self.current or name in self._queue:
            return False
        self._queue.append(name)
        return True

    def show_next(self) -> bool:
        if self.is_processing or not self._queue:
            return False
        prompt = self._capabilities.conflict_prompt
        if prompt is None:
            _LOGGER.debug("No conflict prompt registered; %d conflict(s) waiting", len(self._queue))
            return False
        name = self._queue.popleft()
        self.is_processing = True
        self.current = name
        _LOGGER.debug("Requesting conflict decision for %s", name)
        try:
            prompt.request_decision(name, self.resolve)
        except Exception:
            # Put the conflict back so a later check can ask again.
            if self.is_processing and self.current == name:
                self.is_processing = False
                self.current = None
                self._queue.appendleft(name)
            raise
        return True

    def resolve(self, name: str, choice: str) -> bool:
        if choice not in VALID_CHOICES:
            raise ValueError(f"unknown conflict choice: {choice!r}")
        if not self.is_processing or name != self.current:
            _LOGGER.warning("Ignoring stale conflict decision for %s", name)
            return False
        self.choices[name] = choice
        detector = self._detector(name)
        if choice == CHOICE_USE_HOST:
            if detector.disable(self._host):
                self.toggled_addons[name] = "disabled"
            else:
                self._report_failure(detector, enable=False)
        else:
            self._saved.profile["bankModuleEnabled"] = False
            if detector.enable(self._host):
                self.toggled_addons[name] = "enabled"
            else:
                self._report_failure(detector, enable=True)
        self.reload_required = True
        self.is_processing = False
        self.current = None
        _LOGGER.info("Conflict with %s resolved: %s", name, choice)
        self._continue()
        return True

    def _continue(self) -> None:
        if self._queue:
            self._next_prompt.schedule(CONFLICT_NEXT_DELAY, self.show_next)
        elif self.reload_required:
            self.request_reload()

    def request_reload(self) -> None:
        prompt = self._capabilities.reload_prompt
        if prompt is not None:
            prompt.confirm_reload(self.perform_reload)
        else:
            self._notify("Changes to bank addons require a UI reload. Type /reload to apply them.")

    def perform_reload(self) -> bool:
        """Reload the UI once the user accepted the reload prompt."""

        if not self._host.reload_ui():
            self._notify("Could not reload the UI automatically. Type /reload to apply the changes.")
            return False
        self.reload_required = False
        return True

    def _report_failure(self, detector: ConflictDetector, *, enable: bool) -> None:
        error = ConflictActionFailed(f"could not {'enable' if enable else 'disable'} {detector.name}")
        _LOGGER.warning("%s", error)
        self.failures.append(str(error))
        self._notify(f"Could not {'enable' if enable else 'disable'} {detector.name} automatically. {detector.manual_action(enable)}")

    # Signals ----------------------------------------------------------------

    def on_addon_loaded(self, name: str, recheck_delay: float) -> bool:
        """Forget a ``useHost`` choice for an addon that was turned back on."""

        if self.choices.get(name) != CHOICE_USE_HOST:
            return False
        del self.choices[name]
        self.toggled_addons.pop(name, None)
        _LOGGER.info("%s was re-enabled; its conflict choice has been reset.", name)
        self.request_check(recheck_delay)
        return True

    # Operations --------------------------------------------------------------

    def status(self) -> List[Dict[str, Any]]:
        active = set(self.detect())
        names = [name for name in self._detectors if name in active or name in self.choices]
        names.extend(name for name in self.choices if name not in self._detectors)
        return [{"name": name, "choice": self.choice_for(name), "active": name in active} for name in names]

    def reset_all_choices(self) -> None:
        self.choices.clear()
        self.toggled_addons.clear()
        self._saved.profile["bankModuleEnabled"] = True
        self._queue.clear()
        self._next_prompt.cancel()
        self.is_processing = False
        self.current = None
        self._throttle.reset()
        _LOGGER.info("All bank conflict choices reset")
        self.request_check()

    def set_bank_module_enabled(self, enabled: bool) -> bool:
        """Toggle bank UI management, flipping competitors this plugin touched."""

        profile = self._saved.profile
        was_enabled = bool(profile.get("bankModuleEnabled", True))
        profile["bankModuleEnabled"] = bool(enabled)
        changed = False
        if enabled and not was_enabled:
            for name, state in list(self.toggled_addons.items()):
                if state != "enabled":
                    continue
                if self._detector(name).disable(self._host):
                    self.toggled_addons[name] = "disabled"
                    changed = True
            self.choices.clear()
            if changed:
                self._notify("Bank UI enabled. Conflicting addons will be disabled.")
            else:
                self._notify("Bank UI features enabled. Use /reload to apply changes.")
        elif not enabled:
            for name, state in list(self.toggled_addons.items()):
                if state != "disabled":
                    continue
                if self._detector(name).enable(self._host):
                    self.toggled_addons[name] = "enabled"
                    changed = True
            if changed:
                self._notify("Bank UI disabled. Previous addons will be re-enabled.")
            else:
                self._notify("Bank UI features disabled. You can now use other bank addons. Use /reload to apply changes.")
        if changed:
            self.reload_required = True
            self.request_reload()
        return changed

    def _detector(self, name: str) -> ConflictDetector:
        return self._detectors.get(name) or ConflictDetector(name)

    def reset_transient(self) -> None:
        self._queue.clear()
        self._next_prompt.cancel()
        self._recheck.cancel()
        self.is_processing = False
        self.current = None

    def cancel_pending(self) -> None:
        self._next_prompt.cancel()
        self._recheck.cancel()
