"""
Load Test Runner

Executes one LoadPlan end to end: setup, scheduled scenarios, metrics
summary, teardown report and threshold verdict.
"""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import UTC, datetime
from typing import Any, Callable, Optional

import httpx

from cacheload.config import settings
from cacheload.connectors.cache_api import CacheApiClient
from cacheload.core.lifecycle import SetupError, setup, teardown
from cacheload.core.metrics_engine import MetricsEngine
from cacheload.core.phase_resolver import PhaseResolver
from cacheload.core.request_executor import RequestExecutor
from cacheload.core.run_clock import RunClock
from cacheload.core.scheduler import Scheduler
from cacheload.core.thresholds import evaluate
from cacheload.core.workload import WorkloadGenerator
from cacheload.models.metrics import MetricsSnapshot
from cacheload.models.outcome import Outcome, RunResult, RunStatus
from cacheload.models.plan import LoadPlan

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_THRESHOLDS_FAILED = 1
EXIT_SETUP_FAILED = 2
EXIT_INTERRUPTED = 130


class LoadTestRunner:
    """
    Runs a load plan against the cache service.

    One runner executes one run; it owns the run's HTTP client, metrics
    engine and scheduler.
    """

    def __init__(
        self,
        plan: LoadPlan,
        *,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        tick_seconds: Optional[float] = None,
        drain_timeout_seconds: Optional[float] = None,
        max_workers_per_scenario: Optional[int] = None,
        rng: Optional[random.Random] = None,
        on_outcome: Optional[Callable[[Outcome], None]] = None,
    ):
        """
        Initialize the runner.

        Args:
            plan: Load plan to execute
            base_url: Overrides settings.CACHE_BASE_URL for this run
            transport: Optional httpx transport (tests, in-process services)
            tick_seconds: Scheduler reconciliation tick
            drain_timeout_seconds: Wait for in-flight requests at run end
            max_workers_per_scenario: Hard cap on live workers per scenario
            rng: Random source (seed it for reproducible key/pattern draws)
            on_outcome: Optional sink receiving every request outcome
        """
        self.plan = plan
        self.api = CacheApiClient.from_settings(base_url=base_url, transport=transport)
        self.tick_seconds = (
            tick_seconds if tick_seconds is not None else settings.SCHEDULER_TICK_SECONDS
        )
        self.drain_timeout_seconds = (
            drain_timeout_seconds
            if drain_timeout_seconds is not None
            else settings.DRAIN_TIMEOUT_SECONDS
        )
        self.max_workers_per_scenario = (
            max_workers_per_scenario or settings.MAX_WORKERS_PER_SCENARIO
        )
        self._rng = rng or random.Random()
        self._on_outcome = on_outcome

        self.status = RunStatus.PENDING
        self.metrics: Optional[MetricsEngine] = None
        self.scheduler: Optional[Scheduler] = None
        self._cancel_event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Request cancellation; workers finish their in-flight request and exit."""
        if not self._cancel_event.is_set():
            logger.info("🛑 Cancellation requested for plan %s", self.plan.name)
        self._cancel_event.set()

    async def run(self) -> RunResult:
        """
        Execute the plan.

        - Warm up the cache (a failure aborts with exit code 2)
        - Run all scenarios until they finish or the run is cancelled
        - Summarize metrics and fetch the final cache report
        - Evaluate thresholds

        Returns:
            RunResult: Final summary including the exit code
        """
        start_time = datetime.now(UTC)
        logger.info("🚀 Executing plan: %s against %s", self.plan.name, self.api.base_url)

        async with self.api:
            try:
                setup_data = await setup(self.api, self.plan)
            except SetupError as e:
                logger.error("❌ Setup failed, aborting run: %s", e)
                self.status = RunStatus.FAILED
                return RunResult(
                    plan_name=self.plan.name,
                    base_url=self.api.base_url,
                    status=self.status,
                    start_time=start_time,
                    end_time=datetime.now(UTC),
                    failure_reason=str(e),
                    exit_code=EXIT_SETUP_FAILED,
                )

            self.status = RunStatus.RUNNING
            clock = RunClock.started_now()
            self.metrics = MetricsEngine()
            executor = RequestExecutor(
                self.api,
                default_timeout_seconds=self.api.default_timeout,
                rng=self._rng,
            )
            generator = WorkloadGenerator(
                executor=executor,
                metrics=self.metrics,
                clock=clock,
                phases=PhaseResolver(self.plan.phases),
                cancel_event=self._cancel_event,
                rng=self._rng,
                on_outcome=self._on_outcome,
            )
            self.scheduler = Scheduler(
                list(self.plan.scenarios),
                clock=clock,
                run_worker=generator.run_worker,
                tick_seconds=self.tick_seconds,
                max_workers_per_scenario=self.max_workers_per_scenario,
                drain_timeout_seconds=self.drain_timeout_seconds,
            )

            logger.info(
                "📋 Scenarios: %s, planned span: %.0fs",
                ", ".join(s.name for s in self.plan.scenarios),
                self.plan.end_seconds,
            )
            await self.scheduler.run(self._cancel_event)
            duration = clock.elapsed()

            snapshot = self.metrics.summarize()
            report = await teardown(self.api, self.plan)

        end_time = datetime.now(UTC)
        verdict = evaluate(self.plan.threshold_list(), snapshot)

        if self.cancelled:
            self.status = RunStatus.CANCELLED
            exit_code = EXIT_INTERRUPTED
        else:
            self.status = RunStatus.COMPLETED
            exit_code = EXIT_OK if verdict.passed else EXIT_THRESHOLDS_FAILED

        result = RunResult(
            plan_name=self.plan.name,
            base_url=self.api.base_url,
            status=self.status,
            start_time=start_time,
            end_time=end_time,
            duration_seconds=round(duration, 3),
            peak_workers=self.scheduler.peak_workers,
            metrics=snapshot.to_dict(),
            thresholds_passed=verdict.passed,
            thresholds={r.key: r.to_dict() for r in verdict.results},
            baseline_report=setup_data.get("baseline_report"),
            cache_report=report.to_dict() if report is not None else None,
            exit_code=exit_code,
        )
        _log_summary(result, snapshot)
        return result


def _log_summary(result: RunResult, snapshot: MetricsSnapshot) -> None:
    reqs = snapshot.get("http_reqs")
    failed = snapshot.get("http_req_failed")
    duration = snapshot.get("http_req_duration")
    logger.info(
        "✅ Run %s: %d requests, failed rate %.2f%%, p95 %.1fms, peak %d workers, %.1fs",
        result.status,
        int(reqs.total) if reqs is not None else 0,
        (failed.rate * 100) if failed is not None else 0.0,
        duration.percentile(95) if duration is not None else 0.0,
        result.peak_workers,
        result.duration_seconds or 0.0,
    )
    for key, entry in result.thresholds.items():
        mark = "✓" if entry["passed"] else "✗"
        logger.info("   %s %s (observed=%s)", mark, key, _fmt(entry["observed"]))


def _fmt(value: Any) -> str:
    if value is None:
        return "n/a"
    return f"{float(value):.4g}"
