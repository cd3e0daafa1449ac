from __future__ import annotations

import json

import pytest

import load
from ledger_plugin.scheduler import VirtualScheduler


@pytest.fixture
def started(tmp_path, host, capabilities):
    scheduler = VirtualScheduler()
    assert load.plugin_start(str(tmp_path), host, scheduler=scheduler, capabilities=capabilities) == "WarbandLedger"
    yield tmp_path, scheduler
    load.plugin_stop()


def test_plugin_start_is_idempotent(started, host):
    first = load.engine()

    assert load.plugin_start("/elsewhere", host) == "WarbandLedger"
    assert load.engine() is first
    assert first.saved.identity_key == "Aria-Silvermoon"


def test_signals_and_commands_route_to_engine(started, host, window):
    plugin_dir, scheduler = started
    host.open_personal_bank(28)

    assert load.on_signal("SessionOpened", 1) is True
    scheduler.advance(0.5)
    assert window.shown == ["personal"]

    assert load.slash_command("/wl chars") is True
    assert load.slash_command("/say hi") is False
    assert "WarbandLedger: Saved characters (1):" in host.messages


def test_session_close_writes_saved_variables(started, host):
    plugin_dir, _ = started
    host.open_personal_bank(28)
    host.put(-1, 3, 6948, 1, "Hearthstone")

    load.on_signal("SessionOpened", 1)
    load.on_signal("SessionClosed")

    document = json.loads((plugin_dir / "WarbandLedgerDB.json").read_text(encoding="utf-8"))
    personal = document["global"]["characters"]["Aria-Silvermoon"]["personalBank"]
    assert personal["usedSlots"] == 1


def test_stop_persists_settings_and_detaches(tmp_path, host):
    load.plugin_start(str(tmp_path), host, scheduler=VirtualScheduler())
    load.engine().settings.debug_mode = True

    load.plugin_stop()
    load.plugin_stop()

    document = json.loads((tmp_path / "WarbandLedgerDB.json").read_text(encoding="utf-8"))
    assert document["profiles"]["Default"]["settings"]["debugMode"] is True
    assert load.engine() is None
    assert load.on_signal("SessionOpened", 1) is False
    assert load.slash_command("/wl help") is False


def test_settings_reload_on_next_start(tmp_path, host):
    load.plugin_start(str(tmp_path), host, scheduler=VirtualScheduler())
    load.engine().settings.replace_default_bank = False
    load.plugin_stop()

    load.plugin_start(str(tmp_path), host, scheduler=VirtualScheduler())
    try:
        assert load.engine().settings.replace_default_bank is False
    finally:
        load.plugin_stop()
