from __future__ import annotations

import pytest

from ledger_plugin.capabilities import CapabilityRegistry
from ledger_plugin.conflicts import (
    CHOICE_UNRESOLVED,
    CHOICE_USE_HOST,
    CHOICE_USE_OTHER,
    MAX_RECORDED_FAILURES,
    ConflictDetector,
    SubFeatureConflictDetector,
)
from ledger_plugin.engine import LedgerEngine


def test_resolving_use_host_disables_competitor_and_requests_reload(engine, host, prompt, reload_prompt) -> None:
    host.loaded_addons = {"Bagnon"}

    engine.handle_signal("PlayerEnteringWorld")
    assert prompt.requests == ["Bagnon"]
    assert engine.conflicts.is_processing is True

    prompt.answer(CHOICE_USE_HOST)

    assert engine.saved.profile["bankConflictChoices"] == {"Bagnon": CHOICE_USE_HOST}
    assert host.enable_calls == [("Bagnon", False)]
    assert engine.conflicts.reload_required is True
    assert engine.conflicts.is_processing is False
    assert reload_prompt.calls == 1


def test_conflicts_are_prompted_one_at_a_time_in_detection_order(engine, host, scheduler, prompt, reload_prompt) -> None:
    host.loaded_addons = {"Baganator", "Bagnon", "AdiBags"}

    engine.conflicts.check_conflicts()

    assert prompt.requests == ["Bagnon"]
    assert engine.conflicts.queue == ["AdiBags", "Baganator"]
    assert engine.conflicts.show_next() is False
    assert prompt.requests == ["Bagnon"]

    prompt.answer(CHOICE_USE_HOST)
    assert prompt.requests == ["Bagnon"]
    scheduler.advance(0.5)
    assert prompt.requests == ["Bagnon", "AdiBags"]
    assert reload_prompt.calls == 0

    prompt.answer(CHOICE_USE_HOST)
    scheduler.advance(0.5)
    assert prompt.requests == ["Bagnon", "AdiBags", "Baganator"]

    prompt.answer(CHOICE_USE_OTHER)
    scheduler.advance(5.0)

    assert prompt.requests == ["Bagnon", "AdiBags", "Baganator"]
    assert engine.conflicts.queue == []
    assert engine.conflicts.is_processing is False
    assert reload_prompt.calls == 1


def test_repeated_checks_do_not_duplicate_queue_entries(engine, host, prompt) -> None:
    host.loaded_addons = {"Bagnon", "AdiBags"}

    engine.conflicts.check_conflicts()
    engine.conflicts.check_conflicts()

    assert prompt.requests == ["Bagnon"]
    assert engine.conflicts.queue == ["AdiBags"]


def test_stale_decision_is_ignored(engine, host, prompt) -> None:
    host.loaded_addons = {"Bagnon", "AdiBags"}
    engine.conflicts.check_conflicts()

    assert engine.conflicts.resolve("AdiBags", CHOICE_USE_HOST) is False
    assert engine.conflicts.choice_for("AdiBags") == CHOICE_UNRESOLVED

    with pytest.raises(ValueError):
        engine.conflicts.resolve("Bagnon", "maybe")


def test_re_enabled_competitor_is_asked_again_after_throttle(engine, host, saved, scheduler, prompt) -> None:
    saved.profile["bankConflictChoices"]["Bagnon"] = CHOICE_USE_HOST
    engine.handle_signal("PlayerEnteringWorld")
    assert prompt.requests == []

    host.loaded_addons.add("Bagnon")
    engine.handle_signal("ExtensionLoaded", "Bagnon")

    assert engine.conflicts.choice_for("Bagnon") == CHOICE_UNRESOLVED
    scheduler.advance(0.5)
    engine.conflicts.request_check()
    assert prompt.requests == []

    scheduler.advance(0.5)

    assert prompt.requests == ["Bagnon"]


def test_extension_loaded_without_use_host_choice_changes_nothing(engine, host, saved, scheduler, prompt) -> None:
    saved.profile["bankConflictChoices"]["Bagnon"] = CHOICE_USE_OTHER
    host.loaded_addons.add("Bagnon")

    engine.handle_signal("ExtensionLoaded", "Bagnon")
    scheduler.advance(2.0)

    assert engine.conflicts.choice_for("Bagnon") == CHOICE_USE_OTHER
    assert prompt.requests == []


def test_use_other_keeps_bank_unsuppressed_until_reset(engine, host, scheduler, prompt, window) -> None:
    host.loaded_addons = {"Bagnon"}
    host.open_personal_bank(28)
    engine.conflicts.check_conflicts()
    prompt.answer(CHOICE_USE_OTHER)

    assert engine.saved.profile["bankModuleEnabled"] is False
    assert host.enable_calls == [("Bagnon", True)]
    assert engine.is_using_other_owner() is True

    for _ in range(3):
        engine.handle_signal("SessionOpened", 1)
        scheduler.advance(1.0)
        assert engine.session.suppressed is False
        engine.handle_signal("SessionClosed")
    assert window.shown == []

    engine.reset_all_conflict_choices()

    assert engine.is_using_other_owner() is False
    assert engine.saved.profile["bankModuleEnabled"] is True
    engine.handle_signal("SessionOpened", 1)
    assert engine.session.suppressed is True


def test_sub_feature_detector_only_conflicts_when_module_enabled(engine, host, prompt) -> None:
    host.loaded_addons = {"ElvUI"}
    host.addon_options[("ElvUI", "bags.enable")] = False

    assert engine.conflicts.detect() == []

    host.addon_options[("ElvUI", "bags.enable")] = True
    engine.conflicts.check_conflicts()
    prompt.answer(CHOICE_USE_HOST)

    assert host.option_calls == [("ElvUI", "bags.enable", False)]
    assert host.enable_calls == []
    assert host.loaded_addons == {"ElvUI"}
    assert engine.conflicts.detect() == []


def test_failed_disable_is_reported_and_choice_still_persisted(engine, host, prompt) -> None:
    host.loaded_addons = {"Bagnon"}
    host.fail_actions = True
    engine.conflicts.check_conflicts()

    prompt.answer(CHOICE_USE_HOST)

    assert engine.conflicts.choice_for("Bagnon") == CHOICE_USE_HOST
    assert list(engine.conflicts.failures) == ["could not disable Bagnon"]
    assert any("Could not disable Bagnon automatically" in message for message in host.messages)
    assert "Bagnon" not in engine.saved.profile["toggledAddons"]


def test_use_host_safety_net_asks_again_when_still_active(engine, host, prompt) -> None:
    host.loaded_addons = {"Bagnon"}
    host.fail_actions = True
    engine.conflicts.check_conflicts()
    prompt.answer(CHOICE_USE_HOST)

    engine.conflicts.check_conflicts()

    assert prompt.requests == ["Bagnon", "Bagnon"]


def test_queue_waits_without_prompt_capability(host, saved, settings, scheduler) -> None:
    engine = LedgerEngine(host, saved, settings, scheduler, capabilities=CapabilityRegistry())
    host.loaded_addons = {"Bagnon"}

    engine.conflicts.check_conflicts()

    assert engine.conflicts.is_processing is False
    assert engine.conflicts.queue == ["Bagnon"]


def test_reload_falls_back_to_chat_message_without_prompt(host, saved, settings, scheduler) -> None:
    registry = CapabilityRegistry()
    engine = LedgerEngine(host, saved, settings, scheduler, capabilities=registry)
    answers: list[str] = []

    class _AutoPrompt:
        def request_decision(self, name, respond) -> None:
            answers.append(name)
            respond(name, CHOICE_USE_HOST)

    registry.register_conflict_prompt(_AutoPrompt())
    host.loaded_addons = {"Bagnon"}
    engine.conflicts.check_conflicts()

    assert answers == ["Bagnon"]
    assert any("/reload" in message for message in host.messages)


def test_status_lists_active_and_decided_competitors(engine, host, prompt) -> None:
    host.loaded_addons = {"Bagnon", "AdiBags"}
    engine.conflicts.check_conflicts()
    prompt.answer(CHOICE_USE_HOST)

    status = engine.get_conflict_status()

    assert status == [
        {"name": "Bagnon", "choice": CHOICE_USE_HOST, "active": False},
        {"name": "AdiBags", "choice": CHOICE_UNRESOLVED, "active": True},
    ]


def test_bank_module_toggle_flips_addons_it_touched(engine, host, prompt, reload_prompt) -> None:
    host.loaded_addons = {"Bagnon"}
    engine.conflicts.check_conflicts()
    prompt.answer(CHOICE_USE_HOST)
    assert engine.saved.profile["toggledAddons"] == {"Bagnon": "disabled"}

    assert engine.set_bank_module_enabled(False) is True
    assert engine.saved.profile["toggledAddons"] == {"Bagnon": "enabled"}
    assert "Bagnon" in host.loaded_addons

    assert engine.set_bank_module_enabled(True) is True
    assert engine.saved.profile["toggledAddons"] == {"Bagnon": "disabled"}
    assert engine.saved.profile["bankConflictChoices"] == {}
    assert "Bagnon" not in host.loaded_addons
    assert reload_prompt.calls == 3


def test_detector_manual_action_text() -> None:
    assert "AddOns list" in ConflictDetector("Bagnon").manual_action(enable=False)
    assert "Bags module" in SubFeatureConflictDetector("ElvUI", "bags.enable", "Bags").manual_action(enable=True)


class _FlakyPrompt:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.requests: list = []

    def request_decision(self, name, respond) -> None:
        self.requests.append(name)
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("prompt frame not ready")


def test_failing_prompt_puts_conflict_back_in_queue(host, saved, settings, scheduler) -> None:
    registry = CapabilityRegistry()
    prompt = _FlakyPrompt(failures=1)
    registry.register_conflict_prompt(prompt)
    engine = LedgerEngine(host, saved, settings, scheduler, capabilities=registry)
    host.loaded_addons = {"Bagnon", "AdiBags"}

    assert engine.handle_signal("PlayerEnteringWorld") is False

    assert engine.conflicts.is_processing is False
    assert engine.conflicts.current is None
    assert engine.conflicts.queue == ["Bagnon", "AdiBags"]
    assert engine.errors.stats()["byContext"] == {"PlayerEnteringWorld": 1}

    scheduler.advance(5.0)
    engine.conflicts.request_check()

    assert prompt.requests == ["Bagnon", "Bagnon"]
    assert engine.conflicts.is_processing is True
    assert engine.conflicts.queue == ["AdiBags"]


def test_accepted_reload_prompt_reloads_ui(engine, host, prompt, reload_prompt) -> None:
    host.loaded_addons = {"Bagnon"}
    engine.conflicts.check_conflicts()
    prompt.answer(CHOICE_USE_HOST)
    assert host.reloads == 0

    reload_prompt.accept()

    assert host.reloads == 1
    assert engine.conflicts.reload_required is False


def test_failed_reload_keeps_reload_required(engine, host, prompt, reload_prompt) -> None:
    host.loaded_addons = {"Bagnon"}
    engine.conflicts.check_conflicts()
    prompt.answer(CHOICE_USE_HOST)
    host.fail_actions = True

    reload_prompt.accept()

    assert host.reloads == 0
    assert engine.conflicts.reload_required is True
    assert host.messages[-1] == "WarbandLedger: Could not reload the UI automatically. Type /reload to apply the changes."


def test_recorded_failures_are_capped(engine, host, prompt) -> None:
    host.fail_actions = True
    host.loaded_addons = {"Bagnon"}

    for _ in range(MAX_RECORDED_FAILURES + 5):
        engine.conflicts.check_conflicts()
        prompt.answer(CHOICE_USE_HOST)

    assert len(engine.conflicts.failures) == MAX_RECORDED_FAILURES
