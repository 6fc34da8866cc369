"""Admission pacing for the dispatch coordinator."""

from __future__ import annotations

import time
from typing import Callable


def validate_qps(qps: float) -> float:
    if isinstance(qps, bool) or not isinstance(qps, (int, float)):
        raise ValueError(f"qps must be a number, got {qps!r}")
    if qps <= 0:
        raise ValueError(f"qps must be > 0, got {qps!r}")
    return float(qps)


class Pacer:
    """Fixed gap between admissions, derived from a queries-per-second rate.

    Not thread-safe: the coordinator thread is its only user.
    """

    def __init__(self, qps: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.clock = clock
        self.qps = validate_qps(qps)
        self.last_admitted_at: float | None = None

    @property
    def interval(self) -> float:
        return 1.0 / self.qps

    def update(self, qps: float) -> None:
        self.qps = validate_qps(qps)

    def remaining(self) -> float:
        """Seconds until the next admission is allowed."""
        if self.last_admitted_at is None:
            return 0.0
        return max(0.0, self.last_admitted_at + self.interval - self.clock())

    def mark_admitted(self) -> float:
        self.last_admitted_at = self.clock()
        return self.last_admitted_at
