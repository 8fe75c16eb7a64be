"""Slack webhook delivery: payload formatting, HTTP posting and retry backoff."""

from .backoff import Backoff
from .client import WebhookClient, WebhookHttpError, WebhookTransport, is_retryable_error
from .formatter import BlockLayout, PayloadLayout, PlainTextLayout, format_batch, layout_from_name
from .models import SlackIdentity, SlackMessage

__all__ = [
    "Backoff",
    "BlockLayout",
    "PayloadLayout",
    "PlainTextLayout",
    "SlackIdentity",
    "SlackMessage",
    "WebhookClient",
    "WebhookHttpError",
    "WebhookTransport",
    "format_batch",
    "is_retryable_error",
    "layout_from_name",
]
