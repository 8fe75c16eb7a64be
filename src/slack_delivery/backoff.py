"""Retry backoff for webhook deliveries.

Kept as a pure function of the attempt number plus a random source, so tests can
seed the random source and assert exact delays without touching the clock.
"""

from __future__ import annotations

import random


class Backoff:
    """Exponential backoff with proportional jitter.

    Rules:
    - delay(attempt) = base_delay * 2 ** (attempt - 1)
    - plus jitter: a random fraction in [0, jitter_fraction) of that delay
    - capped at max_delay after jitter is applied
    - with jitter_fraction <= 1, delay(n + 1) >= delay(n) for every n
    """

    def __init__(
        self,
        *,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
        jitter_fraction: float = 0.1,
        rng: random.Random | None = None,
    ) -> None:
        if base_delay <= 0:
            raise ValueError(f"base_delay must be > 0. Got: {base_delay}")
        if max_delay < base_delay:
            raise ValueError(f"max_delay must be >= base_delay. Got: {max_delay} < {base_delay}")
        if not 0.0 <= jitter_fraction <= 1.0:
            raise ValueError(f"jitter_fraction must be within [0, 1]. Got: {jitter_fraction}")

        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter_fraction = jitter_fraction
        self._rng = rng or random.Random()

    def delay(self, attempt: int) -> float:
        """Return the sleep before retry number `attempt` (1-based)."""
        if attempt < 1:
            raise ValueError(f"attempt must be >= 1. Got: {attempt}")
        # Keep 2**exponent finite; 60 doublings exceed any sane cap.
        exponent = min(attempt - 1, 60)
        delay = self.base_delay * (2**exponent)
        delay += delay * self.jitter_fraction * self._rng.random()
        return min(delay, self.max_delay)

    def bounds(self, attempt: int) -> tuple[float, float]:
        """Return the `(min, max)` delay `delay(attempt)` can produce."""
        exponent = min(attempt - 1, 60)
        low = self.base_delay * (2**exponent)
        high = low * (1.0 + self.jitter_fraction)
        return min(low, self.max_delay), min(high, self.max_delay)
