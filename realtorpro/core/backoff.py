"""Exponential backoff schedule used for retrying background work."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from random import SystemRandom

_rng = SystemRandom()


@dataclass(frozen=True)
class BackoffPolicy:
    max_attempts: int = 5
    base_delay: float = 1.0
    factor: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.25

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.factor < 1:
            raise ValueError("factor must be >= 1")
        if self.max_delay < 0:
            raise ValueError("max_delay must be >= 0")
        if self.jitter < 0:
            raise ValueError("jitter must be >= 0")

    def attempts(self) -> Iterator[tuple[int, float]]:
        """Yield (attempt, delay_after_failure) pairs, attempt numbers starting at 1."""
        delay = self.base_delay
        for attempt in range(1, self.max_attempts + 1):
            offset = _rng.uniform(0, delay * self.jitter) if self.jitter > 0 and delay > 0 else 0.0
            yield attempt, min(delay + offset, self.max_delay)
            delay = min(delay * self.factor, self.max_delay)
