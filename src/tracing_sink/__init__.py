"""Forward filtered logging events to a Slack webhook.

This package provides:
- A `logging.Handler` (the hook) that filters events and enqueues them without blocking.
- A single asyncio delivery worker that batches, formats and posts them with retry/backoff.
- Explicit diagnostics counters shared by both, never reported through the sink itself.
"""

from .channel import BoundedChannel, ChannelClosed
from .diagnostics import Diagnostics
from .filters import FilterPolicy, accept
from .handler import SlackHandler
from .layer import SlackLayer
from .models import EventRecord, Level, capture
from .worker import DeliveryOutcome, DeliveryState, DeliveryWorker

__all__ = [
    "BoundedChannel",
    "ChannelClosed",
    "DeliveryOutcome",
    "DeliveryState",
    "DeliveryWorker",
    "Diagnostics",
    "EventRecord",
    "FilterPolicy",
    "Level",
    "SlackHandler",
    "SlackLayer",
    "accept",
    "capture",
]
