"""Registration: wire a handler, channel and delivery worker from configuration.

Typical use inside an asyncio program:

    async with SlackLayer(cfg.slack, cfg.sink):
        logging.getLogger("app").warning("db timeout", extra={"query_ms": 5012})

`SlackLayer.create(...)` builds the same thing from keyword arguments.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any

from config import LayoutName, LevelName, SinkConfig, SlackConfig
from slack_delivery.backoff import Backoff
from slack_delivery.client import WebhookClient, WebhookTransport
from slack_delivery.formatter import PayloadLayout, layout_from_name
from slack_delivery.models import SlackIdentity

from .channel import BoundedChannel
from .diagnostics import Diagnostics
from .filters import FilterPolicy
from .handler import SlackHandler
from .models import EventRecord
from .worker import DeliveryWorker


class SlackLayer:
    """Owns the hook/worker pair and attaches the hook to a logger."""

    def __init__(
        self,
        slack: SlackConfig,
        sink: SinkConfig | None = None,
        *,
        diagnostics: Diagnostics | None = None,
        transport: WebhookTransport | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Build the pipeline. Nothing runs until `start()`.

        Args:
            diagnostics: Counters shared by hook and worker; pass one in to
                observe an isolated instance.
            transport: Replaces the HTTP client (tests, custom transports).
            rng: Random source for backoff jitter; seed it for reproducible delays.
        """
        sink = sink or SinkConfig()
        self.slack_config = slack
        self.sink_config = sink
        self.diagnostics = diagnostics or Diagnostics()

        self.policy = FilterPolicy.build(
            min_level=sink.min_level,
            pattern=sink.pattern,
            exclude_fields=sink.exclude_fields,
            exclude_target=sink.exclude_target,
            exclude_message=sink.exclude_message,
            drop_event_fields=sink.drop_event_fields,
        )
        self.layout: PayloadLayout = layout_from_name(sink.layout, max_blocks=sink.max_blocks)
        self.channel: BoundedChannel[EventRecord] = BoundedChannel(sink.channel_capacity)

        self.handler = SlackHandler(
            channel=self.channel,
            policy=self.policy,
            diagnostics=self.diagnostics,
            ignored_targets=sink.ignored_targets,
        )
        self.worker = DeliveryWorker(
            channel=self.channel,
            transport=transport or WebhookClient(slack),
            layout=self.layout,
            backoff=Backoff(
                base_delay=sink.base_delay,
                max_delay=sink.max_backoff,
                jitter_fraction=sink.jitter_fraction,
                rng=rng,
            ),
            diagnostics=self.diagnostics,
            batch_max_count=sink.batch_max_count,
            batch_max_age=sink.batch_max_age,
            retry_ceiling=sink.retry_ceiling,
            max_in_flight=sink.max_in_flight,
            shutdown_grace=sink.shutdown_grace,
            identity=SlackIdentity(channel=slack.channel_name, username=slack.username, icon_emoji=slack.icon_emoji),
            sleep=sleep,
        )
        self._installed_on: list[logging.Logger] = []

    @classmethod
    def create(
        cls,
        webhook_url: str,
        *,
        min_level: LevelName = "warn",
        pattern: str | None = None,
        layout: LayoutName = "blocks",
        batch_max_count: int = 20,
        batch_max_age: float = 2.0,
        retry_ceiling: int = 5,
        max_backoff: float = 30.0,
        diagnostics: Diagnostics | None = None,
        transport: WebhookTransport | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        **options: Any,
    ) -> SlackLayer:
        """Build a layer from keyword arguments.

        Extra `options` are passed to `SinkConfig` (e.g. `channel_capacity`,
        `base_delay`, `max_blocks`) or `SlackConfig` (e.g. `channel_name`, `gzip`).
        """
        slack_keys = set(SlackConfig.model_fields) - {"webhook_url"}
        slack_options = {k: v for k, v in options.items() if k in slack_keys}
        sink_options = {k: v for k, v in options.items() if k not in slack_keys}

        slack = SlackConfig(webhook_url=webhook_url, **slack_options)
        sink = SinkConfig(
            min_level=min_level,
            pattern=pattern,
            layout=layout,
            batch_max_count=batch_max_count,
            batch_max_age=batch_max_age,
            retry_ceiling=retry_ceiling,
            max_backoff=max_backoff,
            **sink_options,
        )
        return cls(slack, sink, diagnostics=diagnostics, transport=transport, rng=rng, sleep=sleep)

    def install(self, logger: logging.Logger | None = None) -> None:
        """Attach the handler to `logger` (the root logger by default)."""
        target = logger if logger is not None else logging.getLogger()
        if self.handler not in target.handlers:
            target.addHandler(self.handler)
            self._installed_on.append(target)

    def uninstall(self) -> None:
        """Detach the handler from every logger it was installed on."""
        for target in self._installed_on:
            target.removeHandler(self.handler)
        self._installed_on.clear()

    def start(self) -> asyncio.Task[None]:
        """Start the delivery worker on the running event loop."""
        return self.worker.start()

    async def shutdown(self, grace_period: float | None = None) -> None:
        """Stop capturing, flush what is queued, and stop the worker."""
        self.uninstall()
        await self.worker.shutdown(grace_period)

    async def __aenter__(self) -> SlackLayer:
        self.start()
        self.install()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()
