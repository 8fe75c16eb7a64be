"""Background delivery worker.

The worker is the only consumer of the hook's channel and the only part of the
sink that performs I/O. Per batch the lifecycle is:

    Accumulating -> Ready -> Sending -> Delivered
                                     -> Retrying -> Sending ...
                                     -> Abandoned

- A batch becomes Ready when it reaches `batch_max_count` records or its oldest
  record is `batch_max_age` seconds old, whichever happens first.
- Each formatted payload is delivered in its own task, so a payload sleeping in
  backoff never stalls ingestion of later events. At most `max_in_flight`
  deliveries run at once; past that the worker waits and the hook starts dropping.
- 2xx is Delivered. 429, 5xx and transport errors are retried with backoff until
  `retry_ceiling` attempts have been made. Any other status is Abandoned at once.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

from slack_delivery.backoff import Backoff
from slack_delivery.client import WebhookHttpError, WebhookTransport, is_retryable_error
from slack_delivery.formatter import PayloadLayout, format_batch, payload_count
from slack_delivery.models import SlackIdentity

from .channel import BoundedChannel, ChannelClosed
from .diagnostics import Diagnostics
from .models import EventRecord

logger = logging.getLogger(__name__)


class DeliveryState(str, Enum):
    ACCUMULATING = "accumulating"
    READY = "ready"
    SENDING = "sending"
    RETRYING = "retrying"
    DELIVERED = "delivered"
    ABANDONED = "abandoned"


@dataclass
class DeliveryAttempt:
    """Mutable retry state for one payload."""

    payload: bytes
    state: DeliveryState = DeliveryState.SENDING
    attempt: int = 0
    next_delay: float | None = None
    delays: list[float] = field(default_factory=list)
    last_error: str | None = None


@dataclass(frozen=True)
class DeliveryOutcome:
    """Final result of delivering one payload."""

    state: DeliveryState
    attempts: int
    delays: tuple[float, ...] = ()
    last_error: str | None = None

    @property
    def retries(self) -> int:
        return len(self.delays)


def _describe(exc: BaseException) -> str:
    return f"{type(exc).__name__}: {exc}"


class DeliveryWorker:
    """Drains the channel, batches records, and delivers formatted payloads."""

    def __init__(
        self,
        *,
        channel: BoundedChannel[EventRecord],
        transport: WebhookTransport,
        layout: PayloadLayout,
        backoff: Backoff,
        diagnostics: Diagnostics,
        batch_max_count: int = 20,
        batch_max_age: float = 2.0,
        retry_ceiling: int = 5,
        max_in_flight: int = 4,
        shutdown_grace: float = 5.0,
        identity: SlackIdentity | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        history_size: int = 100,
    ) -> None:
        """Create a worker; call `start()` from a running event loop to begin draining.

        Args:
            retry_ceiling: Max send attempts per payload; it is never sent again
                after that many failures.
            max_in_flight: Bound on concurrent deliveries (including ones
                sleeping in backoff).
            sleep: Awaitable used for backoff delays (tests inject a fake).
        """
        if batch_max_count <= 0:
            raise ValueError(f"batch_max_count must be > 0. Got: {batch_max_count}")
        if batch_max_age <= 0:
            raise ValueError(f"batch_max_age must be > 0. Got: {batch_max_age}")
        if retry_ceiling <= 0:
            raise ValueError(f"retry_ceiling must be > 0. Got: {retry_ceiling}")

        self._channel = channel
        self._transport = transport
        self._layout = layout
        self._backoff = backoff
        self._diagnostics = diagnostics
        self._identity = identity

        self._batch_max_count = batch_max_count
        self._batch_max_age = batch_max_age
        self._retry_ceiling = retry_ceiling
        self._shutdown_grace = shutdown_grace

        self._sleep = sleep
        self._clock = clock

        self._slots = asyncio.Semaphore(max_in_flight)
        self._inflight: set[asyncio.Task[DeliveryOutcome]] = set()
        self._task: asyncio.Task[None] | None = None
        self._reported_drops = 0

        self.state = DeliveryState.ACCUMULATING
        self.recent_outcomes: deque[DeliveryOutcome] = deque(maxlen=history_size)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_flight(self) -> int:
        return len(self._inflight)

    def start(self) -> asyncio.Task[None]:
        """Start the background task on the running loop (idempotent)."""
        if self._task is not None and not self._task.done():
            return self._task
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self.run(), name="slack-delivery-worker")
        return self._task

    async def shutdown(self, grace_period: float | None = None) -> None:
        """Close the channel and give the worker `grace_period` seconds to flush.

        Events already queued are drained and the open batch is flushed. Whatever
        is still being delivered when the grace period ends is cancelled.
        """
        grace = self._shutdown_grace if grace_period is None else grace_period
        self._channel.close()
        if self._task is None:
            # Never started: still drain whatever the hook queued.
            self.start()
        assert self._task is not None

        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=grace)
        except TimeoutError:
            logger.warning(
                "Delivery worker did not finish within %.1fs; cancelling %d in-flight deliveries",
                grace,
                len(self._inflight),
            )
            self._task.cancel()
            pending = list(self._inflight)
            for task in pending:
                task.cancel()
            await asyncio.gather(self._task, *pending, return_exceptions=True)

    async def run(self) -> None:
        """Receive-batch-flush loop; returns once the channel is closed and drained."""
        batch: list[EventRecord] = []
        opened_at = 0.0
        self.state = DeliveryState.ACCUMULATING
        try:
            while True:
                timeout: float | None = None
                if batch:
                    timeout = max(0.0, opened_at + self._batch_max_age - self._clock())
                try:
                    record = await self._channel.recv(timeout=timeout)
                except ChannelClosed:
                    break

                if record is not None:
                    if not batch:
                        opened_at = self._clock()
                    batch.append(record)

                if not batch:
                    continue
                if len(batch) >= self._batch_max_count or self._clock() - opened_at >= self._batch_max_age:
                    ready, batch = batch, []
                    await self._flush(ready)

            if batch:
                ready, batch = batch, []
                await self._flush(ready)
            if self._inflight:
                await asyncio.gather(*list(self._inflight), return_exceptions=True)
        except asyncio.CancelledError:
            # Whatever was still buffered or queued will never be formatted.
            stranded = len(batch) + len(self._channel)
            if stranded:
                self._abandon_unsent(payload_count(stranded, self._layout), events=stranded)
            raise
        finally:
            self._report_drops()
            logger.info("Delivery worker stopped: %s", self._diagnostics.snapshot())

    async def _flush(self, batch: list[EventRecord]) -> None:
        """Format a Ready batch and hand each payload to its own delivery task."""
        self.state = DeliveryState.READY
        self._report_drops()
        try:
            payloads = format_batch(batch, self._layout, identity=self._identity, diagnostics=self._diagnostics)
        except Exception as exc:  # noqa: BLE001 - a formatting bug must not kill the worker
            logger.error("Failed to format batch of %d event(s); dropping it", len(batch), exc_info=exc)
            self._diagnostics.increment("batches_abandoned")
            self._diagnostics.record_error(exc)
            self.state = DeliveryState.ACCUMULATING
            return

        started = 0
        try:
            for payload in payloads:
                await self._slots.acquire()
                task = asyncio.create_task(self._deliver(payload), name="slack-delivery")
                self._inflight.add(task)
                task.add_done_callback(self._on_delivery_done)
                started += 1
        except asyncio.CancelledError:
            self._abandon_unsent(len(payloads) - started)
            raise
        self.state = DeliveryState.ACCUMULATING

    def _on_delivery_done(self, task: asyncio.Task[DeliveryOutcome]) -> None:
        self._inflight.discard(task)
        self._slots.release()
        if task.cancelled():
            self._diagnostics.increment("batches_abandoned")
            self.recent_outcomes.append(DeliveryOutcome(state=DeliveryState.ABANDONED, attempts=0, last_error="cancelled"))
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Delivery task crashed", exc_info=exc)

    async def _deliver(self, payload: bytes) -> DeliveryOutcome:
        """Send one payload, retrying transient failures with backoff."""
        attempt = DeliveryAttempt(payload=payload)
        while True:
            attempt.state = DeliveryState.SENDING
            attempt.attempt += 1
            try:
                await self._transport.post(attempt.payload)
            except Exception as exc:  # noqa: BLE001 - classify and retry/abandon
                attempt.last_error = _describe(exc)
                self._diagnostics.record_error(exc)

                if not is_retryable_error(exc):
                    if not isinstance(exc, WebhookHttpError):
                        logger.error("Unexpected delivery error", exc_info=exc)
                    return self._abandon(attempt, reason="non-retryable error")
                if attempt.attempt >= self._retry_ceiling:
                    return self._abandon(attempt, reason="retry ceiling reached")

                attempt.state = DeliveryState.RETRYING
                attempt.next_delay = self._backoff.delay(attempt.attempt)
                attempt.delays.append(attempt.next_delay)
                self._diagnostics.increment("delivery_retries")
                logger.info(
                    "Delivery attempt %d/%d failed (%s); retrying in %.2fs",
                    attempt.attempt,
                    self._retry_ceiling,
                    attempt.last_error,
                    attempt.next_delay,
                )
                await self._sleep(attempt.next_delay)
            else:
                self._diagnostics.increment("batches_delivered")
                attempt.state = DeliveryState.DELIVERED
                return self._finish(attempt)

    def _abandon(self, attempt: DeliveryAttempt, *, reason: str) -> DeliveryOutcome:
        attempt.state = DeliveryState.ABANDONED
        self._diagnostics.increment("batches_abandoned")
        logger.warning(
            "Abandoned payload after %d attempt(s) (%s): %s; %d payload(s) abandoned so far",
            attempt.attempt,
            reason,
            attempt.last_error,
            self._diagnostics.get("batches_abandoned"),
        )
        return self._finish(attempt)

    def _finish(self, attempt: DeliveryAttempt) -> DeliveryOutcome:
        outcome = DeliveryOutcome(
            state=attempt.state,
            attempts=attempt.attempt,
            delays=tuple(attempt.delays),
            last_error=attempt.last_error,
        )
        self.recent_outcomes.append(outcome)
        return outcome

    def _abandon_unsent(self, payloads: int, *, events: int | None = None) -> None:
        """Count payloads that cancellation stopped before their first send."""
        if payloads <= 0:
            return
        self._diagnostics.increment("batches_abandoned", payloads)
        if events is None:
            logger.warning("Shutdown cancelled %d payload(s) before they were sent", payloads)
        else:
            logger.warning("Shutdown cancelled %d unsent event(s) (%d payload(s))", events, payloads)

    def _report_drops(self) -> None:
        dropped = self._diagnostics.get("events_dropped")
        if dropped > self._reported_drops:
            logger.warning(
                "%d event(s) dropped because the delivery channel was full (%d total)",
                dropped - self._reported_drops,
                dropped,
            )
            self._reported_drops = dropped
