"""Logging handler that feeds accepted events to the delivery worker.

`emit` runs synchronously on whichever thread logged the event. It does no I/O
and never blocks: it snapshots the record, applies the filter policy, and makes
one non-blocking channel send. A full channel drops the event and counts it.
Nothing raised here reaches the code that emitted the log call.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from config import DEFAULT_IGNORED_TARGETS

from .channel import BoundedChannel, ChannelClosed
from .diagnostics import Diagnostics
from .filters import FilterPolicy, accept
from .models import EventRecord, Level, capture


class SlackHandler(logging.Handler):
    """A `logging.Handler` forwarding filtered events into a bounded channel."""

    def __init__(
        self,
        *,
        channel: BoundedChannel[EventRecord],
        policy: FilterPolicy,
        diagnostics: Diagnostics,
        ignored_targets: Iterable[str] = DEFAULT_IGNORED_TARGETS,
    ) -> None:
        # Severity is gated by the policy, so the handler itself passes everything.
        super().__init__(level=logging.NOTSET)
        self._channel = channel
        self._policy = policy
        self._diagnostics = diagnostics
        self._ignored_targets = tuple(ignored_targets)

    @property
    def policy(self) -> FilterPolicy:
        return self._policy

    def _is_ignored(self, target: str) -> bool:
        """True for the sink's own loggers (and its HTTP stack) to prevent self-capture."""
        for prefix in self._ignored_targets:
            if target == prefix or target.startswith(prefix + "."):
                return True
        return False

    def emit(self, record: logging.LogRecord) -> None:
        try:
            if self._is_ignored(record.name):
                return
            # Cheap severity pre-check so rejected events skip the snapshot entirely.
            if Level.from_logging(record.levelno) < self._policy.min_level:
                self._diagnostics.increment("events_filtered")
                return

            event = capture(record, exclude_fields=self._policy.exclude_fields, diagnostics=self._diagnostics)
            if not accept(event, self._policy):
                self._diagnostics.increment("events_filtered")
                return

            try:
                sent = self._channel.try_send(event)
            except ChannelClosed:
                self._diagnostics.increment("events_rejected_closed")
                return

            if sent:
                self._diagnostics.increment("events_accepted")
            else:
                self._diagnostics.increment("events_dropped")
        except Exception:  # noqa: BLE001 - a logging sink must never crash the host
            self.handleError(record)

    def close(self) -> None:
        """Close the channel so the worker drains and stops."""
        self._channel.close()
        super().close()
