"""Deferred-callback scheduling primitives.

Everything in the engine runs on a single cooperative thread: signal handlers
and the deferred continuations they arm. This module provides the scheduler
protocol the engine is written against, a deterministic virtual clock used for
headless runs and tests, and the debounce/throttle helpers layered on top.
The Qt-backed scheduler lives in :mod:`ledger_plugin.qt_scheduler`.
"""
from __future__ import annotations

import heapq
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol, Tuple


_LOGGER = logging.getLogger("WarbandLedger.Scheduler")

Callback = Callable[[], None]

OPEN_SETTLE_DELAY = 0.2
WINDOW_SHOW_DELAY = 0.1
RESCAN_DEBOUNCE_DELAY = 0.5
GUILD_RESCAN_DELAY = 0.5
MONEY_REFRESH_DELAY = 0.05
CURRENCY_REFRESH_DELAY = 0.3
REPUTATION_REFRESH_DELAY = 0.1
SAVE_CHARACTER_DELAY = 2.0
CONFLICT_NEXT_DELAY = 0.5
CONFLICT_RECHECK_DELAY = 1.0
CONFLICT_CHECK_THROTTLE = 1.0


class TimerHandle(Protocol):
    """Cancelable reference to one scheduled callback."""

    @property
    def active(self) -> bool:
        ...

    def cancel(self) -> None:
        ...


class DeferredScheduler(Protocol):
    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        ...

    def now(self) -> float:
        ...


@dataclass
class EventStats:
    """Counters for deferred work, reported by the diagnostics command."""

    processed: int = 0
    throttled: int = 0
    queued: int = 0
    cancelled: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "throttled": self.throttled,
            "queued": self.queued,
            "cancelled": self.cancelled,
        }

    def reset(self) -> None:
        self.processed = 0
        self.throttled = 0
        self.queued = 0
        self.cancelled = 0


class _VirtualHandle:
    __slots__ = ("due", "seq", "callback", "_active")

    def __init__(self, due: float, seq: int, callback: Callback) -> None:
        self.due = due
        self.seq = seq
        self.callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        self._active = False

    def _fire(self) -> None:
        if not self._active:
            return
        self._active = False
        self.callback()


class VirtualScheduler:
    """Deterministic scheduler driven by explicit :meth:`advance` calls.

    Callbacks fire ordered by due time and, for equal due times, by the order
    they were scheduled. Callbacks armed while advancing run in the same call
    when they fall due inside the advanced window.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)
        self._seq = 0
        self._heap: List[Tuple[float, int, _VirtualHandle]] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callback) -> _VirtualHandle:
        due = self._now + max(0.0, float(delay))
        self._seq += 1
        handle = _VirtualHandle(due, self._seq, callback)
        heapq.heappush(self._heap, (due, handle.seq, handle))
        return handle

    @property
    def pending_count(self) -> int:
        return sum(1 for _, _, handle in self._heap if handle.active)

    def next_due(self) -> Optional[float]:
        for due, _, handle in sorted(self._heap):
            if handle.active:
                return due
        return None

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing every callback that falls due."""

        target = self._now + max(0.0, float(seconds))
        fired = 0
        while self._heap and self._heap[0][0] <= target:
            due, _, handle = heapq.heappop(self._heap)
            if not handle.active:
                continue
            self._now = max(self._now, due)
            handle._fire()
            fired += 1
        self._now = target
        return fired

    def run_pending(self) -> int:
        """Fire everything scheduled, however far in the future."""

        fired = 0
        while True:
            due = self.next_due()
            if due is None:
                return fired
            fired += self.advance(due - self._now)


class DebouncedCall:
    """Keeps at most one live deferred handle for a logical operation."""

    def __init__(self, scheduler: DeferredScheduler, name: str, stats: Optional[EventStats] = None) -> None:
        self._scheduler = scheduler
        self.name = name
        self._stats = stats
        self._handle: Optional[TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None and self._handle.active

    def schedule(self, delay: float, callback: Callback) -> None:
        self.cancel()
        if self._stats is not None:
            self._stats.queued += 1

        def _run() -> None:
            self._handle = None
            if self._stats is not None:
                self._stats.processed += 1
            callback()

        self._handle = self._scheduler.call_later(delay, _run)
        _LOGGER.debug("Scheduled %s in %.2fs", self.name, delay)

    def cancel(self) -> bool:
        handle = self._handle
        self._handle = None
        if handle is None or not handle.active:
            return False
        handle.cancel()
        if self._stats is not None:
            self._stats.cancelled += 1
        return True


class Throttle:
    """Allow at most one pass per key inside a rolling window."""

    def __init__(self, scheduler: DeferredScheduler, window_seconds: float, stats: Optional[EventStats] = None) -> None:
        self._scheduler = scheduler
        self._window = max(0.0, float(window_seconds))
        self._stats = stats
        self._last: Dict[str, float] = {}

    def allow(self, key: str) -> bool:
        now = self._scheduler.now()
        last = self._last.get(key)
        if last is not None and now - last < self._window:
            if self._stats is not None:
                self._stats.throttled += 1
            _LOGGER.debug("Throttled %s (%.2fs since last run)", key, now - last)
            return False
        self._last[key] = now
        return True

    def remaining(self, key: str) -> float:
        last = self._last.get(key)
        if last is None:
            return 0.0
        return max(0.0, self._window - (self._scheduler.now() - last))

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._last.clear()
        else:
            self._last.pop(key, None)
