"""Protected-call boundary and in-memory error ring buffer."""
from __future__ import annotations

import logging
import traceback
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple


LOGGER = logging.getLogger("WarbandLedger.Errors")

MAX_ERROR_ENTRIES = 50
DEDUPE_WINDOW = 10


@dataclass
class ErrorEntry:
    context: str
    message: str
    trace: str
    timestamp: float
    count: int = 1


class ErrorLog:
    """Keeps the most recent handler failures for the diagnostics command."""

    def __init__(
        self,
        clock: Callable[[], float],
        notify: Optional[Callable[[str], None]] = None,
        *,
        debug: Callable[[], bool] = lambda: False,
        capacity: int = MAX_ERROR_ENTRIES,
    ) -> None:
        self._clock = clock
        self._notify = notify
        self._debug = debug
        self._entries: Deque[ErrorEntry] = deque(maxlen=max(1, int(capacity)))
        self._by_context: Dict[str, int] = {}
        self._total = 0

    def record(self, context: str, exc: BaseException) -> ErrorEntry:
        message = f"{type(exc).__name__}: {exc}"
        self._total += 1
        first_for_context = context not in self._by_context
        self._by_context[context] = self._by_context.get(context, 0) + 1
        recent = list(self._entries)[-DEDUPE_WINDOW:]
        for entry in reversed(recent):
            if entry.context == context and entry.message == message:
                entry.count += 1
                entry.timestamp = self._clock()
                LOGGER.debug("Repeated error in %s (x%d): %s", context, entry.count, message)
                return entry
        trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        entry = ErrorEntry(context=context, message=message, trace=trace, timestamp=self._clock())
        self._entries.append(entry)
        LOGGER.warning("Error in %s: %s", context, message)
        LOGGER.debug("%s", trace)
        if self._notify is not None and (first_for_context or self._debug()):
            self._notify(f"An error occurred in {context}. Use '/wl errors' for details.")
        return entry

    def protected(self, context: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Tuple[bool, Any]:
        """Run ``func`` and trap any exception into the ring buffer."""

        try:
            return True, func(*args, **kwargs)
        except Exception as exc:
            self.record(context, exc)
            return False, None

    def wrap(self, context: str, func: Callable[..., Any]) -> Callable[..., Any]:
        def _wrapped(*args: Any, **kwargs: Any) -> Any:
            return self.protected(context, func, *args, **kwargs)[1]

        return _wrapped

    @property
    def entries(self) -> List[ErrorEntry]:
        return list(self._entries)

    def stats(self) -> Dict[str, Any]:
        return {"total": self._total, "byContext": dict(self._by_context), "stored": len(self._entries)}

    def export(self) -> str:
        if not self._entries:
            return "No errors recorded."
        lines = [f"WarbandLedger error log ({self._total} total)"]
        for entry in reversed(self._entries):
            suffix = f" (x{entry.count})" if entry.count > 1 else ""
            lines.append(f"[{entry.timestamp:.1f}] {entry.context}: {entry.message}{suffix}")
        return "\n".join(lines)

    def clear(self) -> None:
        self._entries.clear()
        self._by_context.clear()
        self._total = 0
