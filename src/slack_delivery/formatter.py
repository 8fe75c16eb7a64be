"""Render batches of event records into Slack webhook payloads.

Two layouts are supported, chosen once at configuration time:

- `PlainTextLayout`: one `[LEVEL] target: message {k=v, ...}` line per record,
  joined into the message `text`.
- `BlockLayout`: one Block Kit `section` per record. Slack caps blocks per
  message, so larger batches are split into several payloads.

A field value that cannot be rendered never aborts a batch: it is replaced with
a placeholder and the degradation is logged and counted.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Literal, Protocol

from .models import (
    MAX_BLOCKS_PER_MESSAGE,
    MAX_FIELD_TEXT,
    MAX_SECTION_FIELDS,
    MAX_SECTION_TEXT,
    UNRENDERABLE,
    SectionBlock,
    SlackIdentity,
    SlackMessage,
    TextObject,
)

if TYPE_CHECKING:
    from tracing_sink.models import EventRecord

logger = logging.getLogger(__name__)


class DegradationCounter(Protocol):
    def increment(self, name: str, amount: int = 1) -> None: ...


@dataclass(frozen=True)
class PlainTextLayout:
    kind: Literal["plain"] = "plain"


@dataclass(frozen=True)
class BlockLayout:
    kind: Literal["blocks"] = "blocks"
    max_blocks: int = MAX_BLOCKS_PER_MESSAGE

    def __post_init__(self) -> None:
        if self.max_blocks <= 0:
            raise ValueError(f"max_blocks must be > 0. Got: {self.max_blocks}")


PayloadLayout = PlainTextLayout | BlockLayout


def layout_from_name(name: str, *, max_blocks: int = MAX_BLOCKS_PER_MESSAGE) -> PayloadLayout:
    """Resolve a configured layout name ('plain' or 'blocks')."""
    if name == "plain":
        return PlainTextLayout()
    if name == "blocks":
        return BlockLayout(max_blocks=max_blocks)
    raise ValueError(f"Unknown payload layout: {name!r}")


def payload_count(record_count: int, layout: PayloadLayout) -> int:
    """Number of payloads `format_batch` produces for a batch of this size."""
    if record_count == 0:
        return 0
    if isinstance(layout, BlockLayout):
        return math.ceil(record_count / layout.max_blocks)
    return 1


def format_batch(
    batch: Sequence[EventRecord],
    layout: PayloadLayout,
    *,
    identity: SlackIdentity | None = None,
    diagnostics: DegradationCounter | None = None,
) -> list[bytes]:
    """Serialize a batch into one or more JSON payloads, in record order."""
    if not batch:
        return []
    renderer = _FieldRenderer(diagnostics)
    if isinstance(layout, PlainTextLayout):
        messages = [_plain_message(batch, renderer)]
    elif isinstance(layout, BlockLayout):
        messages = [
            _block_message(batch[start : start + layout.max_blocks], renderer)
            for start in range(0, len(batch), layout.max_blocks)
        ]
    else:
        raise TypeError(f"Unsupported payload layout: {layout!r}")

    overrides = identity.model_dump(exclude_none=True) if identity is not None else {}
    return [message.model_copy(update=overrides).to_bytes() for message in messages]


class _FieldRenderer:
    """Turns record text and field values into valid UTF-8 text.

    Anything that cannot be rendered is replaced and counted, so one bad value
    never costs the rest of the batch.
    """

    def __init__(self, diagnostics: DegradationCounter | None) -> None:
        self._diagnostics = diagnostics

    def _degraded(self) -> None:
        if self._diagnostics is not None:
            self._diagnostics.increment("format_degradations")

    def clean(self, what: str, text: str) -> str:
        """Replace characters UTF-8 cannot encode (e.g. lone surrogates from `surrogateescape`)."""
        try:
            text.encode("utf-8")
        except UnicodeEncodeError as exc:
            logger.warning("%s is not valid UTF-8 (%s); replacing bad characters", what, exc.reason)
            self._degraded()
            return _utf8(text)
        return text

    def render(self, key: str, value: Any) -> str:
        if isinstance(value, str):
            return self.clean(f"Field {key!r}", value)
        try:
            if isinstance(value, (dict, list, tuple)):
                text = json.dumps(value, default=str, ensure_ascii=False)
            else:
                text = str(value)
        except Exception as exc:  # noqa: BLE001 - one bad field must not sink the batch
            logger.warning("Field %r could not be rendered (%s: %s); using placeholder", key, type(exc).__name__, exc)
            self._degraded()
            return UNRENDERABLE
        return self.clean(f"Field {key!r}", text)

    def pairs(self, record: EventRecord) -> list[tuple[str, str]]:
        return [(self.clean("Field name", key), self.render(key, value)) for key, value in record.fields]

    def header(self, record: EventRecord) -> tuple[str, str]:
        """Return the cleaned `(target, message)` of a record."""
        return self.clean("Event target", record.target), self.clean("Event message", record.message)


def _utf8(text: str) -> str:
    return text.encode("utf-8", "replace").decode("utf-8")


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


def _level_name(record: EventRecord) -> str:
    return record.level.name


def _plain_line(record: EventRecord, renderer: _FieldRenderer) -> str:
    target, message = renderer.header(record)
    line = f"[{_level_name(record)}] {target}: {message}"
    pairs = renderer.pairs(record)
    if pairs:
        line += " {" + ", ".join(f"{key}={value}" for key, value in pairs) + "}"
    return line


def _plain_message(batch: Sequence[EventRecord], renderer: _FieldRenderer) -> SlackMessage:
    return SlackMessage(text="\n".join(_plain_line(record, renderer) for record in batch))


def _origin(record: EventRecord, renderer: _FieldRenderer) -> str | None:
    """`file#Lline` and the emitting thread, as far as they are known."""
    parts = []
    if record.source_file:
        source = renderer.clean("Source file", record.source_file)
        parts.append(f"{source}#L{record.source_line}" if record.source_line else source)
    if record.thread_name:
        parts.append(f"thread {renderer.clean('Thread name', record.thread_name)}")
    return ", ".join(parts) or None


def _section(record: EventRecord, renderer: _FieldRenderer) -> SectionBlock:
    target, message = renderer.header(record)
    lines = [f"*[{_level_name(record)}] {target}*", message]
    origin = _origin(record, renderer)
    if origin is not None:
        lines.append(f"_{origin}_")
    text = TextObject(text=_truncate("\n".join(lines), MAX_SECTION_TEXT))

    pairs = renderer.pairs(record)
    if len(pairs) > MAX_SECTION_FIELDS:
        hidden = len(pairs) - (MAX_SECTION_FIELDS - 1)
        pairs = pairs[: MAX_SECTION_FIELDS - 1] + [("…", f"+{hidden} more")]
    fields = [TextObject(text=_truncate(f"*{key}*\n{value}", MAX_FIELD_TEXT)) for key, value in pairs]

    return SectionBlock(text=text, fields=fields or None)


def _block_message(chunk: Sequence[EventRecord], renderer: _FieldRenderer) -> SlackMessage:
    # `text` is the notification/fallback line shown where blocks are not rendered.
    worst = max(chunk, key=lambda r: r.level)
    # The sections below already count bad characters in this message.
    summary = f"{len(chunk)} event(s), highest level {_level_name(worst)}: {_utf8(worst.message)}"
    return SlackMessage(
        text=_truncate(summary, MAX_SECTION_TEXT),
        blocks=[_section(record, renderer) for record in chunk],
    )
