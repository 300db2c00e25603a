"""Bounded retry policy with exponential backoff for chain submission."""

from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    """How many chain attempts a session gets and how long to wait between them."""
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay_seconds: float = 30.0
    jitter: float = 0.1  # fraction of the delay

    def backoff(self, attempt: int) -> float:
        """Delay in seconds before retry number *attempt* (1-based).

        Formula: min(base * multiplier ^ (attempt - 1), max) +/- jitter
        """
        delay = self.base_delay_seconds * (self.backoff_multiplier ** max(attempt - 1, 0))
        delay = min(delay, self.max_delay_seconds)
        spread = delay * self.jitter
        if spread:
            delay += random.uniform(-spread, spread)
        return max(0.0, delay)
