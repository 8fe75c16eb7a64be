"""Event filtering.

`accept` is the only gate between capture and the delivery channel. It is a pure
function over an immutable policy, so concurrent hook invocations need no locking.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from .models import EventRecord, Level

PatternLike = str | re.Pattern[str]


def _compile(pattern: PatternLike | None) -> re.Pattern[str] | None:
    """Compile a string pattern; blank strings mean no pattern."""
    if isinstance(pattern, str):
        return re.compile(pattern) if pattern else None
    return pattern


def _compile_all(patterns: Iterable[PatternLike]) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p) if isinstance(p, str) else p for p in patterns)


@dataclass(frozen=True)
class FilterPolicy:
    """Severity threshold plus the patterns deciding which events are forwarded."""

    min_level: Level = Level.WARN
    # Matched with `re.search` against the target, then the message.
    pattern: re.Pattern[str] | None = None
    # Field names matching any of these are stripped at capture time.
    exclude_fields: tuple[re.Pattern[str], ...] = ()
    # Events whose target or message matches are dropped.
    exclude_target: re.Pattern[str] | None = None
    exclude_message: re.Pattern[str] | None = None
    # Events carrying a field whose name matches any of these are dropped.
    drop_event_fields: tuple[re.Pattern[str], ...] = ()

    @classmethod
    def build(
        cls,
        *,
        min_level: str | int | Level = Level.WARN,
        pattern: PatternLike | None = None,
        exclude_fields: Iterable[PatternLike] = (),
        exclude_target: PatternLike | None = None,
        exclude_message: PatternLike | None = None,
        drop_event_fields: Iterable[PatternLike] = (),
    ) -> FilterPolicy:
        """Create a policy, compiling any string patterns."""
        return cls(
            min_level=Level.parse(min_level),
            pattern=_compile(pattern),
            exclude_fields=_compile_all(exclude_fields),
            exclude_target=_compile(exclude_target),
            exclude_message=_compile(exclude_message),
            drop_event_fields=_compile_all(drop_event_fields),
        )


def accept(record: EventRecord, policy: FilterPolicy) -> bool:
    """Return True if the record should be forwarded."""
    if record.level < policy.min_level:
        return False
    if policy.exclude_target is not None and policy.exclude_target.search(record.target):
        return False
    if policy.exclude_message is not None and policy.exclude_message.search(record.message):
        return False
    if policy.drop_event_fields:
        for key, _value in record.fields:
            if any(p.search(key) for p in policy.drop_event_fields):
                return False
    if policy.pattern is None:
        return True
    return policy.pattern.search(record.target) is not None or policy.pattern.search(record.message) is not None
