from __future__ import annotations

import logging
import re
import sys

import pytest
from pydantic import ValidationError

from slack_delivery.models import UNRENDERABLE
from tracing_sink.diagnostics import Diagnostics
from tracing_sink.models import NO_MESSAGE, EventRecord, Level, capture


def _log_record(
    level: int = logging.WARNING,
    msg: str = "db timeout",
    args: tuple = (),
    *,
    name: str = "app.db",
    extra: dict | None = None,
    exc_info=None,
) -> logging.LogRecord:
    logger = logging.getLogger(name)
    return logger.makeRecord(name, level, "/srv/app/db.py", 42, msg, args, exc_info, extra=extra)


@pytest.mark.parametrize(
    ("levelno", "expected"),
    [
        (1, Level.TRACE),
        (logging.DEBUG, Level.DEBUG),
        (15, Level.DEBUG),
        (logging.INFO, Level.INFO),
        (logging.WARNING, Level.WARN),
        (logging.ERROR, Level.ERROR),
        (logging.CRITICAL, Level.ERROR),
    ],
)
def test_level_from_logging(levelno: int, expected: Level):
    assert Level.from_logging(levelno) is expected


def test_level_ordering_and_parse():
    assert Level.TRACE < Level.DEBUG < Level.INFO < Level.WARN < Level.ERROR
    assert Level.parse("warning") is Level.WARN
    assert Level.parse("Error") is Level.ERROR
    assert Level.parse("fatal") is Level.ERROR
    assert Level.parse(logging.INFO) is Level.INFO
    with pytest.raises(ValueError):
        Level.parse("loud")


def test_capture_snapshots_record_with_extra_fields_in_order():
    record = _log_record(msg="query took %dms", args=(5012,), extra={"table": "orders", "query_ms": 5012})

    event = capture(record)

    assert event.level is Level.WARN
    assert event.target == "app.db"
    assert event.message == "query took 5012ms"
    assert event.fields == (("table", "orders"), ("query_ms", 5012))
    assert event.source_file == "/srv/app/db.py"
    assert event.source_line == 42
    assert event.timestamp.tzinfo is not None


def test_capture_adds_error_field_from_exc_info():
    try:
        raise ConnectionError("reset by peer")
    except ConnectionError:
        record = _log_record(level=logging.ERROR, msg="refresh failed", exc_info=sys.exc_info())

    event = capture(record)
    assert event.field("error") == "ConnectionError: reset by peer"
    assert event.message == "refresh failed"


def test_capture_falls_back_to_error_then_placeholder_for_empty_message():
    try:
        raise TimeoutError("upstream")
    except TimeoutError:
        with_error = _log_record(level=logging.ERROR, msg="", exc_info=sys.exc_info())

    assert capture(with_error).message == "TimeoutError: upstream"
    assert capture(_log_record(msg="")).message == NO_MESSAGE


def test_capture_keeps_raw_template_when_args_do_not_match():
    record = _log_record(msg="needs %d and %s", args=("only-one",))
    assert capture(record).message == "needs %d and %s"


def test_capture_strips_excluded_fields():
    record = _log_record(extra={"password": "hunter2", "secret_token": "x", "user": "ada"})
    event = capture(record, exclude_fields=[re.compile("password"), re.compile("^secret_")])
    assert event.fields == (("user", "ada"),)


def test_event_record_is_immutable():
    event = capture(_log_record())
    with pytest.raises(ValidationError):
        event.message = "changed"  # type: ignore[misc]


def test_capture_freezes_container_fields_against_later_mutation():
    context = {"rows": 1}
    tags = ["primary"]
    event = capture(_log_record(extra={"ctx": context, "tags": tags, "attempt": 2}))

    context["rows"] = 999
    tags.append("replica")

    assert event.field("ctx") == '{"rows": 1}'
    assert event.field("tags") == '["primary"]'
    assert event.field("attempt") == 2


def test_capture_replaces_uncapturable_fields_and_counts_them():
    circular: list = []
    circular.append(circular)
    diagnostics = Diagnostics()

    event = capture(_log_record(extra={"loop": circular, "user": "ada"}), diagnostics=diagnostics)

    assert event.field("loop") == UNRENDERABLE
    assert event.field("user") == "ada"
    assert diagnostics.get("format_degradations") == 1
