from __future__ import annotations

from ledger_plugin.error_log import ErrorLog


def _boom(message: str = "boom"):
    raise RuntimeError(message)


def _make_log(notes=None, debug=False, capacity=50) -> ErrorLog:
    return ErrorLog(lambda: 100.0, notes.append if notes is not None else None, debug=lambda: debug, capacity=capacity)


def test_protected_returns_result_or_traps_failure() -> None:
    log = _make_log()

    assert log.protected("math", lambda a, b: a + b, 2, 3) == (True, 5)
    assert log.protected("boom", _boom) == (False, None)

    entry = log.entries[0]
    assert entry.context == "boom"
    assert entry.message == "RuntimeError: boom"
    assert "Traceback" in entry.trace


def test_user_is_notified_once_per_context() -> None:
    notes: list = []
    log = _make_log(notes)

    log.protected("SessionOpened", _boom, "first")
    log.protected("SessionOpened", _boom, "second")
    log.protected("SessionClosed", _boom)

    assert notes == [
        "An error occurred in SessionOpened. Use '/wl errors' for details.",
        "An error occurred in SessionClosed. Use '/wl errors' for details.",
    ]


def test_debug_mode_notifies_every_failure() -> None:
    notes: list = []
    log = _make_log(notes, debug=True)

    log.protected("SessionOpened", _boom, "first")
    log.protected("SessionOpened", _boom, "second")

    assert len(notes) == 2


def test_repeated_failure_is_deduplicated() -> None:
    log = _make_log()

    for _ in range(3):
        log.protected("scan", _boom)

    assert len(log.entries) == 1
    assert log.entries[0].count == 3
    assert log.stats() == {"total": 3, "byContext": {"scan": 3}, "stored": 1}


def test_ring_buffer_keeps_most_recent_entries() -> None:
    log = _make_log(capacity=5)

    for index in range(8):
        log.protected("scan", _boom, f"failure {index}")

    assert [entry.message for entry in log.entries] == [f"RuntimeError: failure {index}" for index in range(3, 8)]
    assert log.stats()["total"] == 8


def test_export_lists_newest_first() -> None:
    log = _make_log()
    assert log.export() == "No errors recorded."

    log.protected("first", _boom, "one")
    log.protected("second", _boom, "two")
    log.protected("second", _boom, "two")

    assert log.export().splitlines() == [
        "WarbandLedger error log (3 total)",
        "[100.0] second: RuntimeError: two (x2)",
        "[100.0] first: RuntimeError: one",
    ]

    log.clear()
    assert log.stats() == {"total": 0, "byContext": {}, "stored": 0}


def test_wrap_hides_failure_from_caller() -> None:
    log = _make_log()
    wrapped = log.wrap("deferred callback", _boom)

    assert wrapped() is None
    assert log.stats()["byContext"] == {"deferred callback": 1}
