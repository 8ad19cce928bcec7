"""Human-like pacing between orders.

The controller never sleeps on hard-coded constants: it asks a ``DelayPolicy``
how long to wait after each completed order, how many orders to handle before
a rest break, and how long a retry backoff lasts.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field, replace
from typing import Any, Mapping, Optional, Tuple

from . import config
from .retry_policy import compute_backoff_seconds


@dataclass
class DelayPolicy:
    """Randomised inter-order delay with occasional longer pauses."""

    min_seconds: float = config.DELAY_MIN_SECONDS
    max_seconds: float = config.DELAY_MAX_SECONDS
    thinking_probability: float = config.THINKING_PROBABILITY
    thinking_range: Tuple[float, float] = (config.THINKING_MIN_SECONDS, config.THINKING_MAX_SECONDS)
    distraction_probability: float = config.DISTRACTION_PROBABILITY
    distraction_range: Tuple[float, float] = (
        config.DISTRACTION_MIN_SECONDS,
        config.DISTRACTION_MAX_SECONDS,
    )
    rest_every: Tuple[int, int] = (config.REST_EVERY_MIN, config.REST_EVERY_MAX)
    rest_range: Tuple[float, float] = (config.REST_MIN_SECONDS, config.REST_MAX_SECONDS)
    backoff_base: float = config.BACKOFF_BASE_SECONDS
    backoff_increment: float = config.BACKOFF_INCREMENT_SECONDS
    backoff_cap: float = config.BACKOFF_MAX_SECONDS
    rng: random.Random = field(default_factory=random.Random, repr=False)

    @classmethod
    def zero(cls) -> "DelayPolicy":
        """Return a policy that never waits, for tests and dry runs."""

        return cls(
            min_seconds=0.0,
            max_seconds=0.0,
            thinking_probability=0.0,
            distraction_probability=0.0,
            rest_range=(0.0, 0.0),
            backoff_base=0.0,
            backoff_increment=0.0,
            backoff_cap=0.0,
        )

    def with_range(self, delay_range: Optional[Tuple[float, float]]) -> "DelayPolicy":
        """Return a copy using the user supplied ``(min, max)`` range."""

        if not delay_range:
            return self
        low, high = sorted((max(0.0, float(delay_range[0])), max(0.0, float(delay_range[1]))))
        return replace(self, min_seconds=low, max_seconds=high)

    def __call__(self, counters: Mapping[str, Any]) -> float:
        return self.inter_item_delay(counters)

    def inter_item_delay(self, counters: Mapping[str, Any]) -> float:
        delay = self.rng.uniform(self.min_seconds, self.max_seconds)
        if self.thinking_probability and self.rng.random() < self.thinking_probability:
            delay += self.rng.uniform(*self.thinking_range)
        if self.distraction_probability and self.rng.random() < self.distraction_probability:
            delay += self.rng.uniform(*self.distraction_range)
        return max(0.0, delay)

    def next_rest_threshold(self) -> int:
        low, high = sorted(self.rest_every)
        return self.rng.randint(max(1, low), max(1, high))

    def rest_break(self) -> float:
        return max(0.0, self.rng.uniform(*self.rest_range))

    def backoff(self, attempt_index: int) -> float:
        return compute_backoff_seconds(
            attempt_index,
            base=self.backoff_base,
            increment=self.backoff_increment,
            cap=self.backoff_cap,
        )


__all__ = ["DelayPolicy"]
