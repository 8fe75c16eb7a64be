from __future__ import annotations

import random

import pytest

from slack_delivery.backoff import Backoff


class _FixedRandom(random.Random):
    def __init__(self, value: float) -> None:
        super().__init__(0)
        self._value = value

    def random(self) -> float:
        return self._value


def test_delay_doubles_per_attempt_without_jitter():
    backoff = Backoff(base_delay=0.5, max_delay=30.0, jitter_fraction=0.0)
    assert [backoff.delay(n) for n in range(1, 6)] == [0.5, 1.0, 2.0, 4.0, 8.0]


def test_delay_is_capped_at_max_delay():
    backoff = Backoff(base_delay=1.0, max_delay=5.0, jitter_fraction=0.0)
    assert [backoff.delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]
    assert backoff.delay(500) == 5.0


def test_jitter_adds_a_bounded_fraction_of_the_delay():
    backoff = Backoff(base_delay=1.0, max_delay=100.0, jitter_fraction=0.5, rng=_FixedRandom(0.5))
    assert backoff.delay(1) == pytest.approx(1.25)
    assert backoff.delay(3) == pytest.approx(5.0)


def test_seeded_rng_gives_reproducible_delays():
    first = Backoff(base_delay=0.5, jitter_fraction=0.3, rng=random.Random(42))
    second = Backoff(base_delay=0.5, jitter_fraction=0.3, rng=random.Random(42))
    assert [first.delay(n) for n in range(1, 8)] == [second.delay(n) for n in range(1, 8)]


@pytest.mark.parametrize("seed", range(20))
def test_delays_never_decrease_and_stay_within_bounds(seed: int):
    backoff = Backoff(base_delay=0.5, max_delay=10.0, jitter_fraction=1.0, rng=random.Random(seed))
    delays = [backoff.delay(n) for n in range(1, 10)]

    assert delays == sorted(delays)
    for attempt, delay in enumerate(delays, start=1):
        low, high = backoff.bounds(attempt)
        assert low <= delay <= high


@pytest.mark.parametrize(
    "kwargs",
    [
        {"base_delay": 0.0},
        {"base_delay": 2.0, "max_delay": 1.0},
        {"jitter_fraction": -0.1},
        {"jitter_fraction": 1.1},
    ],
)
def test_invalid_settings_are_rejected(kwargs: dict):
    with pytest.raises(ValueError):
        Backoff(**kwargs)


def test_attempt_is_one_based():
    with pytest.raises(ValueError):
        Backoff().delay(0)
