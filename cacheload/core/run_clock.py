"""Monotonic run clock shared by the scheduler, workers and phase resolver."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable


@dataclass(frozen=True, slots=True)
class RunClock:
    """Elapsed time since the run started.

    Attributes:
        start: Monotonic instant the run started at
        time_source: Monotonic time function (injectable for tests)
    """

    start: float
    time_source: Callable[[], float] = field(default=time.monotonic, compare=False)

    @classmethod
    def started_now(cls, time_source: Callable[[], float] = time.monotonic) -> RunClock:
        return cls(start=time_source(), time_source=time_source)

    def elapsed(self) -> float:
        """Seconds since start (never negative)."""
        return max(0.0, self.time_source() - self.start)
