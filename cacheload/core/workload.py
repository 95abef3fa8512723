"""
Workload Generator

Runs each virtual worker's iteration loop: resolve the phase, pick a request
pattern by weighted random choice, execute it, record the outcome, then
sleep before the next iteration. Iterations of one worker run strictly in
sequence; workers are independent of each other.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Callable, Optional, Sequence

from cacheload.core.metrics_engine import (
    ITERATION_DURATION,
    ITERATIONS,
    WORKER_ERRORS,
    MetricsEngine,
)
from cacheload.core.phase_resolver import PhaseResolver
from cacheload.core.request_executor import RequestExecutor
from cacheload.core.run_clock import RunClock
from cacheload.core.scheduler import VirtualWorker
from cacheload.models.metrics import MetricKind
from cacheload.models.outcome import Outcome
from cacheload.models.plan import RequestPattern

logger = logging.getLogger(__name__)


def select_pattern(patterns: Sequence[RequestPattern], draw: float) -> RequestPattern:
    """
    Weighted choice of a pattern for a uniform draw in [0, 1).

    Weights are normalized and accumulated in declaration order; each pattern
    owns the interval (lower, upper], so a draw exactly on a boundary goes to
    the earlier pattern. Zero-weight patterns are never selected.
    """
    total = float(sum(p.weight for p in patterns))
    if total <= 0:
        raise ValueError("cannot select from patterns with no positive weight")

    positive = [p for p in patterns if p.weight > 0]
    cumulative = 0.0
    for pattern in positive:
        cumulative += pattern.weight / total
        if draw <= cumulative:
            return pattern
    # Float accumulation can leave the last bound a hair under 1.0.
    return positive[-1]


class WorkloadGenerator:
    """
    Drives virtual workers for one run.

    Args:
        executor: Issues the requests
        metrics: Per-run metrics engine receiving every outcome
        clock: Run clock used for phase resolution
        phases: Phase resolver for the plan
        cancel_event: Run-level cancellation token
        rng: Random source for pattern draws, keys and think time
        on_outcome: Optional sink called with every Outcome
    """

    def __init__(
        self,
        *,
        executor: RequestExecutor,
        metrics: MetricsEngine,
        clock: RunClock,
        phases: PhaseResolver,
        cancel_event: Optional[asyncio.Event] = None,
        rng: Optional[random.Random] = None,
        on_outcome: Optional[Callable[[Outcome], None]] = None,
    ) -> None:
        self.executor = executor
        self.metrics = metrics
        self.clock = clock
        self.phases = phases
        self.cancel_event = cancel_event or asyncio.Event()
        self._rng = rng or random.Random()
        self._on_outcome = on_outcome

    def _should_stop(self, worker: VirtualWorker, stop_signal: asyncio.Event) -> bool:
        if self.cancel_event.is_set() or stop_signal.is_set():
            return True
        limit = worker.iteration_limit
        return limit is not None and worker.iteration_count >= limit

    async def run_worker(self, worker: VirtualWorker, stop_signal: asyncio.Event) -> None:
        """
        Iteration loop for one worker.

        Exits once the worker is stop-signalled, the run is cancelled or the
        iteration limit is reached. A stop signal never interrupts a request
        in flight; it only cuts the think time short.
        """
        try:
            while not self._should_stop(worker, stop_signal):
                await self.run_iteration(worker, stop_signal)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Worker %s error: %s", worker.label, e)
            self.metrics.record(WORKER_ERRORS, MetricKind.COUNTER, 1)

    async def run_iteration(
        self, worker: VirtualWorker, stop_signal: Optional[asyncio.Event] = None
    ) -> Outcome:
        """Execute one iteration: pick, request, record, then think."""
        started = time.perf_counter()
        scenario = worker.scenario

        phase = self.phases.resolve(self.clock.elapsed())
        workload = scenario.workload_for(phase)
        pattern = select_pattern(workload.patterns, self._rng.random())

        tags = {**scenario.tags, "scenario": scenario.name, "phase": phase}
        outcome = await self.executor.execute(pattern, tags=tags, rng=self._rng)
        self.metrics.record_outcome(pattern, outcome)
        if self._on_outcome is not None:
            self._on_outcome(outcome)
        worker.iteration_count += 1

        pause = workload.sleep.duration(self._rng)
        done = worker.iteration_limit is not None and worker.iteration_count >= worker.iteration_limit
        if not done:
            await self._pause(pause, stop_signal)

        self.metrics.record(ITERATIONS, MetricKind.COUNTER, 1)
        self.metrics.record(
            ITERATION_DURATION,
            MetricKind.TREND,
            (time.perf_counter() - started) * 1000.0,
        )
        return outcome

    async def _pause(self, seconds: float, stop_signal: Optional[asyncio.Event]) -> None:
        """Think time as a suspension point; wakes early when stop-signalled."""
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        if stop_signal is None:
            await asyncio.sleep(seconds)
            return
        if stop_signal.is_set():
            return
        try:
            await asyncio.wait_for(stop_signal.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
