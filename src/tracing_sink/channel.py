"""Bounded multi-producer / single-consumer channel.

Producers are synchronous and may run on any thread; the consumer is a single
asyncio task. `asyncio.Queue` is not thread-safe, so the buffer is a deque under
a `threading.Lock`, and producers wake the consumer with
`loop.call_soon_threadsafe` only when it is actually waiting.
"""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from typing import Generic, TypeVar

_T = TypeVar("_T")


class ChannelClosed(Exception):
    """Raised by `try_send` after close, and by `recv` once closed and drained."""


class BoundedChannel(Generic[_T]):
    """FIFO with a fixed capacity and non-blocking sends."""

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be > 0. Got: {capacity}")
        self._capacity = capacity
        self._items: deque[_T] = deque()
        self._lock = threading.Lock()
        self._closed = False

        # Bound lazily to the consumer's event loop.
        self._loop: asyncio.AbstractEventLoop | None = None
        self._ready: asyncio.Event | None = None
        self._waiting = False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def try_send(self, item: _T) -> bool:
        """Enqueue without blocking. Returns False when the channel is full."""
        with self._lock:
            if self._closed:
                raise ChannelClosed("channel is closed")
            if len(self._items) >= self._capacity:
                return False
            self._items.append(item)
            wake = self._waiting
            self._waiting = False
        if wake:
            self._wake()
        return True

    def close(self) -> None:
        """Stop accepting items. Queued items remain available to `recv`."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            wake = self._waiting
            self._waiting = False
        if wake:
            self._wake()

    async def recv(self, timeout: float | None = None) -> _T | None:
        """Return the next item, or None if `timeout` elapsed (or on a spurious wake)."""
        ready = self._bind()
        with self._lock:
            if self._items:
                return self._items.popleft()
            if self._closed:
                raise ChannelClosed("channel is closed")
            ready.clear()
            self._waiting = True

        try:
            if timeout is None:
                await ready.wait()
            else:
                await asyncio.wait_for(ready.wait(), timeout=timeout)
        except TimeoutError:
            pass
        finally:
            with self._lock:
                self._waiting = False

        with self._lock:
            if self._items:
                return self._items.popleft()
            if self._closed:
                raise ChannelClosed("channel is closed")
        return None

    def _bind(self) -> asyncio.Event:
        loop = asyncio.get_running_loop()
        if self._ready is None or self._loop is not loop:
            self._loop = loop
            self._ready = asyncio.Event()
        return self._ready

    def _wake(self) -> None:
        loop, ready = self._loop, self._ready
        if loop is None or ready is None:
            return
        try:
            loop.call_soon_threadsafe(ready.set)
        except RuntimeError:
            # Loop already closed: there is no consumer left to wake.
            return
