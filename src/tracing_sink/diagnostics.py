"""Diagnostics counters shared by the hook and the delivery worker.

Counters are append-only and guarded by a lock because the hook increments them
from arbitrary host threads. They are never reported through the sink itself.
"""

from __future__ import annotations

import threading
from typing import Any

COUNTERS = (
    "events_accepted",
    "events_filtered",
    "events_dropped",
    "events_rejected_closed",
    "format_degradations",
    "delivery_retries",
    "batches_delivered",
    "batches_abandoned",
)


class Diagnostics:
    """Thread-safe counters for the capture-to-delivery pipeline."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: dict[str, int] = dict.fromkeys(COUNTERS, 0)
        self._last_error: str | None = None

    def increment(self, name: str, amount: int = 1) -> None:
        """Add `amount` to the named counter."""
        if name not in self._counts:
            raise KeyError(f"Unknown diagnostics counter: {name!r}")
        with self._lock:
            self._counts[name] += amount

    def record_error(self, error: BaseException | str) -> None:
        """Remember the most recent delivery error."""
        with self._lock:
            self._last_error = str(error) if isinstance(error, str) else f"{type(error).__name__}: {error}"

    def get(self, name: str) -> int:
        with self._lock:
            return self._counts[name]

    @property
    def last_error(self) -> str | None:
        with self._lock:
            return self._last_error

    def snapshot(self) -> dict[str, Any]:
        """Return a point-in-time copy of all counters and the last error."""
        with self._lock:
            data: dict[str, Any] = dict(self._counts)
            data["last_error"] = self._last_error
            return data
