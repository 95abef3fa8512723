"""
Scenario Scheduler

Computes how many virtual workers each scenario should have at any instant
and reconciles live workers to that target on a fixed tick.

Each scenario runs against its own start-offset-shifted clock and owns one
WorkerPool. A single control loop ticks all scenarios; nothing a worker does
can block the tick, since workers are independent tasks.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Awaitable, Callable

from cacheload.core.run_clock import RunClock
from cacheload.core.worker_pool import WorkerPool
from cacheload.models.plan import ExecutorKind, Scenario

logger = logging.getLogger(__name__)


@dataclass
class VirtualWorker:
    """One simulated client running a sequential iteration loop."""

    id: int
    scenario: Scenario
    iteration_limit: int | None = None
    iteration_count: int = 0

    @property
    def label(self) -> str:
        return f"{self.scenario.name}#{self.id}"


# Runs a worker's iteration loop until it is stop-signalled or done.
WorkerRunner = Callable[[VirtualWorker, asyncio.Event], Awaitable[None]]


def interpolate_target(scenario: Scenario, elapsed: float) -> float:
    """
    Fractional target concurrency for a time-driven scenario.

    Inside stage i (start s_i, duration d_i) the target moves linearly from the
    previous stage's target (start_workers for the first stage) to the stage's
    own target. Outside the scenario's active window the target is 0.
    """
    if scenario.executor == ExecutorKind.PER_WORKER_ITERATIONS:
        return 0.0

    t = float(elapsed) - float(scenario.start_offset_seconds)
    if t < 0 or t >= scenario.span_seconds:
        return 0.0

    if scenario.executor == ExecutorKind.CONSTANT_WORKERS:
        return float(scenario.workers or 0)

    previous = float(scenario.start_workers)
    stage_start = 0.0
    for stage in scenario.stages:
        stage_end = stage_start + stage.duration_seconds
        if t < stage_end:
            if stage.duration_seconds <= 0:
                return float(stage.target)
            progress = (t - stage_start) / stage.duration_seconds
            progress = max(0.0, min(1.0, progress))
            return previous + (stage.target - previous) * progress
        previous = float(stage.target)
        stage_start = stage_end
    return 0.0


def target_concurrency(scenario: Scenario, elapsed: float) -> int:
    """Integer target (round half up) for a time-driven scenario."""
    return int(math.floor(interpolate_target(scenario, elapsed) + 0.5))


class ScenarioScheduler:
    """Reconciles one scenario's worker pool against its target."""

    def __init__(
        self,
        scenario: Scenario,
        *,
        run_worker: WorkerRunner,
        max_workers: int = 5000,
        on_workers_changed: Callable[[], None] | None = None,
    ) -> None:
        self.scenario = scenario
        self._run_worker = run_worker
        self.pool = WorkerPool(
            worker_factory=self._worker_task,
            name=scenario.name,
            max_workers=max(1, min(int(max_workers), scenario.peak_workers or 1)),
            on_workers_changed=on_workers_changed,
        )
        self._started = False
        self._expired = False
        self._finished = False
        self._last_target = 0

    @property
    def started(self) -> bool:
        return self._started

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def is_iteration_driven(self) -> bool:
        return self.scenario.executor == ExecutorKind.PER_WORKER_ITERATIONS

    async def _worker_task(self, worker_id: int, stop_signal: asyncio.Event) -> None:
        worker = VirtualWorker(
            id=worker_id,
            scenario=self.scenario,
            iteration_limit=self.scenario.iterations if self.is_iteration_driven else None,
        )
        await self._run_worker(worker, stop_signal)

    def target_at(self, elapsed: float) -> int:
        """Target concurrency at ``elapsed`` on the run clock."""
        if self.is_iteration_driven:
            if elapsed < self.scenario.start_offset_seconds or self._expired:
                return 0
            return self.pool.count if self._started else int(self.scenario.workers or 0)
        return target_concurrency(self.scenario, elapsed)

    async def reconcile(self, elapsed: float) -> int:
        """Bring live workers in line with the target for ``elapsed``.

        Returns:
            The target worker count for this tick
        """
        if self._finished:
            return 0
        if elapsed < self.scenario.start_offset_seconds:
            return 0

        if not self._started:
            self._started = True
            logger.info(
                "▶️  Scenario %s started (%s) at %.1fs",
                self.scenario.name,
                self.scenario.executor.value,
                elapsed,
            )

        if self.is_iteration_driven:
            target = await self._reconcile_iterations(elapsed)
        else:
            target = target_concurrency(self.scenario, elapsed)
            await self.pool.scale_to(target)

        if target != self._last_target:
            logger.debug(
                "[%s] target %d -> %d (live=%d)",
                self.scenario.name, self._last_target, target, self.pool.count,
            )
            self._last_target = target

        if elapsed >= self.scenario.end_seconds or (
            self.is_iteration_driven and self.pool.spawned > 0
        ):
            self.pool.prune_completed()
            if self.pool.count == 0:
                self._finished = True
                logger.info(
                    "⏹️  Scenario %s finished at %.1fs (%d workers spawned)",
                    self.scenario.name, elapsed, self.pool.spawned,
                )
        return target

    async def _reconcile_iterations(self, elapsed: float) -> int:
        # Workers are created once; each retires after its own iterations.
        if self.pool.spawned == 0:
            for _ in range(int(self.scenario.workers or 0)):
                await self.pool.spawn_one()
        if not self._expired and elapsed >= self.scenario.end_seconds:
            self._expired = True
            live = self.pool.count
            if live:
                logger.warning(
                    "[%s] max duration %.0fs reached with %d workers still iterating",
                    self.scenario.name, self.scenario.max_duration_seconds, live,
                )
            self.pool.signal_all()
        return 0 if self._expired else self.pool.count

    def cancel(self) -> None:
        """Stop-signal every worker of this scenario."""
        self.pool.signal_all()

    async def drain(self, *, timeout_seconds: float) -> None:
        """Stop every worker and wait until none is live.

        Workers still busy after ``timeout_seconds`` are waited for without a
        bound; each request they have in flight is itself bounded by its
        pattern timeout.
        """
        await self.pool.stop_all(timeout_seconds=timeout_seconds)
        remaining = self.pool.get_tasks()
        if remaining:
            logger.warning(
                "[%s] Waiting for %d workers to finish in-flight requests",
                self.scenario.name, len(remaining),
            )
            await asyncio.wait(remaining)
            self.pool.prune_completed()
        self._finished = True


class Scheduler:
    """
    Single control loop for all scenarios of a run.

    Every tick reads the run clock and reconciles each scenario. The loop ends
    when all scenarios have finished or the cancel event is set, then drains
    the remaining workers without aborting in-flight requests.
    """

    def __init__(
        self,
        scenarios: list[Scenario],
        *,
        clock: RunClock,
        run_worker: WorkerRunner,
        tick_seconds: float = 1.0,
        max_workers_per_scenario: int = 5000,
        drain_timeout_seconds: float = 30.0,
    ) -> None:
        self.clock = clock
        self.tick_seconds = max(0.001, float(tick_seconds))
        self.drain_timeout_seconds = float(drain_timeout_seconds)
        self.peak_workers = 0
        self.scenario_schedulers = [
            ScenarioScheduler(
                scenario,
                run_worker=run_worker,
                max_workers=max_workers_per_scenario,
                on_workers_changed=self._track_peak,
            )
            for scenario in scenarios
        ]

    @property
    def live_workers(self) -> int:
        return sum(s.pool.count for s in self.scenario_schedulers)

    def _track_peak(self) -> None:
        self.peak_workers = max(self.peak_workers, self.live_workers)

    def targets_at(self, elapsed: float) -> dict[str, int]:
        return {s.scenario.name: s.target_at(elapsed) for s in self.scenario_schedulers}

    async def tick(self) -> bool:
        """Reconcile every scenario once. Returns True when all have finished."""
        elapsed = self.clock.elapsed()
        for sched in self.scenario_schedulers:
            await sched.reconcile(elapsed)
        self._track_peak()
        return all(s.finished for s in self.scenario_schedulers)

    async def run(self, cancel_event: asyncio.Event | None = None) -> None:
        cancel_event = cancel_event or asyncio.Event()
        try:
            while True:
                if cancel_event.is_set():
                    logger.info("Run cancelled; stopping %d workers", self.live_workers)
                    break
                if await self.tick():
                    break
                try:
                    await asyncio.wait_for(cancel_event.wait(), timeout=self.tick_seconds)
                except asyncio.TimeoutError:
                    pass
        finally:
            for sched in self.scenario_schedulers:
                sched.cancel()
            await asyncio.gather(
                *(
                    sched.drain(timeout_seconds=self.drain_timeout_seconds)
                    for sched in self.scenario_schedulers
                )
            )
