"""Slack incoming-webhook payload models.

These models are a small, purpose-built subset of Slack's message payload:
a top-level `text`, optional Block Kit `section` blocks, and the legacy webhook
overrides for channel, username and icon.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

# Documented Block Kit limits.
MAX_BLOCKS_PER_MESSAGE = 50
MAX_SECTION_TEXT = 3000
MAX_SECTION_FIELDS = 10
MAX_FIELD_TEXT = 2000

# Stands in for any value that cannot be turned into valid UTF-8 text.
UNRENDERABLE = "<unrenderable>"


class _Model(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class SlackIdentity(_Model):
    """Per-message overrides of the webhook's defaults."""

    channel: str | None = None
    username: str | None = None
    icon_emoji: str | None = None


class TextObject(_Model):
    type: Literal["mrkdwn", "plain_text"] = "mrkdwn"
    text: str


class SectionBlock(_Model):
    type: Literal["section"] = "section"
    text: TextObject
    fields: list[TextObject] | None = Field(default=None, max_length=MAX_SECTION_FIELDS)


class SlackMessage(_Model):
    """A single webhook POST body."""

    text: str
    blocks: list[SectionBlock] | None = None

    channel: str | None = None
    username: str | None = None
    icon_emoji: str | None = None

    def to_bytes(self) -> bytes:
        """Serialize to the JSON wire format, omitting unset fields."""
        return self.model_dump_json(exclude_none=True).encode("utf-8")
