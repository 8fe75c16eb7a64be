"""Async client for posting payloads to a Slack incoming webhook.

The HTTP call uses `requests` executed in a thread so the delivery worker's
event loop never blocks on network I/O. Retrying is the caller's job; this
module only sends once and classifies failures.
"""

from __future__ import annotations

import asyncio
import gzip
from typing import Protocol

import requests  # type: ignore

from config import SlackConfig

JSON_CONTENT_TYPE = "application/json"


class WebhookTransport(Protocol):
    async def post(self, body: bytes) -> None:
        """Deliver one serialized payload; raise on any failure."""


class WebhookHttpError(RuntimeError):
    """Non-2xx response from the webhook endpoint."""

    def __init__(self, *, status_code: int, body: str | None = None):
        """Create an error capturing the HTTP status code and response text (if any)."""
        self.status_code = status_code
        self.body = body
        super().__init__(f"Webhook HTTP {status_code}: {body}")


class WebhookClient:
    """Posts JSON payloads to the configured webhook URL."""

    def __init__(self, config: SlackConfig):
        self.config = config
        self.webhook_url: str = config.webhook_url

    def _build_request(self, body: bytes) -> tuple[dict[str, str], bytes]:
        """Return the headers and (possibly compressed) body for a POST."""
        headers = {"Content-Type": JSON_CONTENT_TYPE}
        if self.config.gzip:
            headers["Content-Encoding"] = "gzip"
            body = gzip.compress(body)
        return headers, body

    async def post(self, body: bytes) -> None:
        """Send one payload.

        Raises:
        - `WebhookHttpError` for non-2xx responses
        - `requests.RequestException` for transport errors
        """
        headers, data = self._build_request(body)

        def _do_request() -> None:
            """Execute the HTTP request synchronously (runs in a worker thread)."""
            resp = requests.request(
                "POST",
                self.webhook_url,
                headers=headers,
                data=data,
                timeout=self.config.timeout,
            )
            if 200 <= resp.status_code < 300:
                return None
            try:
                text = resp.text
            except Exception:  # noqa: BLE001 - best-effort error body
                text = None
            raise WebhookHttpError(status_code=resp.status_code, body=text)

        await asyncio.to_thread(_do_request)


def is_retryable_error(exc: BaseException) -> bool:
    """Return True if a delivery failure is transient."""
    if isinstance(exc, WebhookHttpError):
        # Retry 429 and all 5xx; any other status means the payload itself was rejected.
        return exc.status_code == 429 or exc.status_code >= 500

    # Network/transport errors, including timeouts.
    return isinstance(exc, requests.RequestException)
