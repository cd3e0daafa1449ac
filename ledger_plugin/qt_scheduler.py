"""Qt event-loop backed implementation of the deferred scheduler."""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from PyQt6.QtCore import QObject, QTimer


_LOGGER = logging.getLogger("WarbandLedger.Scheduler")


class _QtHandle:
    def __init__(self, timer: QTimer) -> None:
        self._timer: Optional[QTimer] = timer

    @property
    def active(self) -> bool:
        return self._timer is not None and self._timer.isActive()

    def cancel(self) -> None:
        timer = self._timer
        if timer is None:
            return
        self._timer = None
        timer.stop()
        timer.deleteLater()

    def _finish(self) -> None:
        timer = self._timer
        self._timer = None
        if timer is not None:
            timer.deleteLater()


class QtScheduler(QObject):
    """Arms single-shot ``QTimer`` instances owned by this object.

    Timers fire on the thread that owns the scheduler, so callbacks never run
    concurrently with signal handlers delivered through the same event loop.
    """

    def __init__(self, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self._origin = time.monotonic()

    def now(self) -> float:
        return time.monotonic() - self._origin

    def call_later(self, delay: float, callback: Callable[[], None]) -> _QtHandle:
        timer = QTimer(self)
        timer.setSingleShot(True)
        timer.setInterval(max(0, int(round(float(delay) * 1000))))
        handle = _QtHandle(timer)

        def _on_timeout() -> None:
            handle._finish()
            try:
                callback()
            except Exception as exc:
                _LOGGER.warning("Deferred callback raised: %s", exc, exc_info=exc)

        timer.timeout.connect(_on_timeout)
        timer.start()
        return handle
