"""Event record models.

Records are designed to be:
- Immutable snapshots of a single `logging.LogRecord`, taken on the emitting thread.
- Cheap to build, since capture happens inline with the instrumented call site.
- Independent of the logging module once built, so the worker can format them later.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict

from slack_delivery.models import UNRENDERABLE

from .diagnostics import Diagnostics

logger = logging.getLogger(__name__)

NO_MESSAGE = "No message"


class Level(IntEnum):
    """Ordered event severity. Values line up with the `logging` level numbers."""

    TRACE = 5
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARN = logging.WARNING
    ERROR = logging.ERROR

    @classmethod
    def from_logging(cls, levelno: int) -> Level:
        """Map a `logging` level number to the highest `Level` not above it."""
        if levelno >= logging.ERROR:
            return cls.ERROR
        if levelno >= logging.WARNING:
            return cls.WARN
        if levelno >= logging.INFO:
            return cls.INFO
        if levelno >= logging.DEBUG:
            return cls.DEBUG
        return cls.TRACE

    @classmethod
    def parse(cls, value: str | int | Level) -> Level:
        """Parse a level name (any case, `warning`/`critical`/`fatal` accepted) or number."""
        if isinstance(value, Level):
            return value
        if isinstance(value, int):
            return cls.from_logging(value)
        name = value.strip().upper()
        name = {"WARNING": "WARN", "CRITICAL": "ERROR", "FATAL": "ERROR"}.get(name, name)
        try:
            return cls[name]
        except KeyError:
            raise ValueError(f"Unknown level: {value!r}") from None


# Attributes every LogRecord carries; anything else arrived through `extra=`.
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime", "taskName"}


class EventRecord(BaseModel):
    """A snapshot of one captured logging event."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    level: Level
    # Logger name, i.e. where the event was emitted from.
    target: str
    message: str
    # Structured fields in the order they were attached.
    fields: tuple[tuple[str, Any], ...] = ()

    source_file: str | None = None
    source_line: int | None = None
    thread_name: str | None = None

    def field(self, name: str, default: Any = None) -> Any:
        """Return the first field value named `name`."""
        for key, value in self.fields:
            if key == name:
                return value
        return default


def _render_message(record: logging.LogRecord) -> str:
    try:
        return record.getMessage()
    except (TypeError, ValueError):
        # Mismatched %-args; keep the raw template rather than losing the event.
        return str(record.msg)


def _describe_exception(exc_info: Any) -> str | None:
    if not exc_info or exc_info is True:
        return None
    exc_type, exc, _tb = exc_info
    if exc_type is None:
        return None
    text = str(exc) if exc is not None else ""
    return f"{exc_type.__name__}: {text}" if text else exc_type.__name__


_SCALAR_TYPES = (str, int, float, bool, type(None))


def _snapshot_value(key: str, value: Any, diagnostics: Diagnostics | None) -> Any:
    """Freeze a field value so the caller mutating it later cannot change the record."""
    if isinstance(value, _SCALAR_TYPES):
        return value
    try:
        if isinstance(value, (dict, list, tuple)):
            return json.dumps(value, default=str, ensure_ascii=False)
        return str(value)
    except Exception as exc:  # noqa: BLE001 - one bad field must not lose the event
        logger.warning("Field %r could not be captured (%s: %s); using placeholder", key, type(exc).__name__, exc)
        if diagnostics is not None:
            diagnostics.increment("format_degradations")
        return UNRENDERABLE


def capture(
    record: logging.LogRecord,
    *,
    exclude_fields: Iterable[re.Pattern[str]] = (),
    diagnostics: Diagnostics | None = None,
) -> EventRecord:
    """Build an `EventRecord` from a `LogRecord`.

    Fields are the `extra=` attributes plus `error` when exception info is attached.
    Fields whose name matches any of `exclude_fields` are left out. Scalars are
    kept as-is; containers become JSON text and other objects their `str()`,
    both rendered here on the emitting thread.
    """
    exclusions = tuple(exclude_fields)

    fields: list[tuple[str, Any]] = [
        (key, value) for key, value in vars(record).items() if key not in _STANDARD_ATTRS and not key.startswith("_")
    ]
    if exclusions:
        fields = [(key, value) for key, value in fields if not any(p.search(key) for p in exclusions)]
    fields = [(key, _snapshot_value(key, value, diagnostics)) for key, value in fields]

    error = _describe_exception(record.exc_info)
    if error is not None and not any(key == "error" for key, _ in fields):
        if not any(p.search("error") for p in exclusions):
            fields.append(("error", error))

    message = _render_message(record)
    if not message:
        fallback = error if error is not None else dict(fields).get("error")
        message = str(fallback) if fallback else NO_MESSAGE

    return EventRecord(
        timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc),
        level=Level.from_logging(record.levelno),
        target=record.name,
        message=message,
        fields=tuple(fields),
        source_file=record.pathname or None,
        source_line=record.lineno or None,
        thread_name=record.threadName,
    )
