"""
Metrics Engine

Per-run registry of Counter, Rate and Trend metrics. Workers submit samples
through ``record``; only the engine mutates aggregates.

Each metric carries its own lock so unrelated metrics never serialize each
other, and the registry lock is held only while a metric is first created.
Recording is synchronous and never awaits, so no lock is held across I/O.
"""

from __future__ import annotations

import math
import threading
from typing import Any

from cacheload.models.metrics import (
    MetricKind,
    MetricsSnapshot,
    MetricSummary,
    nearest_rank,
)
from cacheload.models.outcome import Outcome
from cacheload.models.plan import MetricSource, RequestPattern

# Built-in metric names.
HTTP_REQS = "http_reqs"
HTTP_REQ_DURATION = "http_req_duration"
HTTP_REQ_FAILED = "http_req_failed"
CHECKS = "checks"
ITERATIONS = "iterations"
ITERATION_DURATION = "iteration_duration"
WORKER_ERRORS = "worker_errors"


def pattern_metric_name(metric: str, pattern: str) -> str:
    """Name of a per-pattern sub-metric, e.g. ``http_req_duration{pattern:user}``."""
    return f"{metric}{{pattern:{pattern}}}"


class MetricKindError(ValueError):
    """Raised when a metric name is reused with a different kind."""


class Metric:
    kind: MetricKind

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()

    def add(self, value: Any) -> None:
        raise NotImplementedError

    def summary(self) -> MetricSummary:
        raise NotImplementedError


class Counter(Metric):
    """Sums numeric increments."""

    kind = MetricKind.COUNTER

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._total = 0.0
        self._count = 0

    def add(self, value: Any = 1) -> None:
        v = float(value)
        if not math.isfinite(v):
            raise ValueError(f"counter {self.name!r} received non-finite value {value!r}")
        with self._lock:
            self._total += v
            self._count += 1

    @property
    def total(self) -> float:
        with self._lock:
            return self._total

    def summary(self) -> MetricSummary:
        with self._lock:
            return MetricSummary(
                name=self.name, kind=self.kind, count=self._count, total=self._total
            )


class Rate(Metric):
    """Tracks the share of truthy samples."""

    kind = MetricKind.RATE

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._hits = 0
        self._total = 0

    def add(self, value: Any) -> None:
        hit = bool(value)
        with self._lock:
            self._total += 1
            if hit:
                self._hits += 1

    def rate(self) -> float:
        with self._lock:
            if self._total == 0:
                return 0.0
            return self._hits / self._total

    def summary(self) -> MetricSummary:
        with self._lock:
            return MetricSummary(
                name=self.name, kind=self.kind, count=self._total, hits=self._hits
            )


class Trend(Metric):
    """Retains every sample so any percentile can be computed afterwards."""

    kind = MetricKind.TREND

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self._values: list[float] = []

    def add(self, value: Any) -> None:
        v = float(value)
        if math.isnan(v):
            raise ValueError(f"trend {self.name!r} received NaN")
        with self._lock:
            self._values.append(v)

    def _sorted(self) -> list[float]:
        with self._lock:
            return sorted(self._values)

    def percentile(self, p: float) -> float:
        return nearest_rank(self._sorted(), p)

    def mean(self) -> float:
        values = self._sorted()
        if not values:
            return 0.0
        return math.fsum(values) / len(values)

    def summary(self) -> MetricSummary:
        values = tuple(self._sorted())
        return MetricSummary(
            name=self.name, kind=self.kind, count=len(values), values=values
        )


_METRIC_TYPES: dict[MetricKind, type[Metric]] = {
    MetricKind.COUNTER: Counter,
    MetricKind.RATE: Rate,
    MetricKind.TREND: Trend,
}


class MetricsEngine:
    """
    Owns all metrics for one run.

    An explicit instance is passed to every worker; there is no process-wide
    registry.
    """

    def __init__(self) -> None:
        self._metrics: dict[str, Metric] = {}
        self._registry_lock = threading.Lock()

    def _get_or_create(self, name: str, kind: MetricKind) -> Metric:
        kind = MetricKind(kind)
        metric = self._metrics.get(name)
        if metric is None:
            with self._registry_lock:
                metric = self._metrics.get(name)
                if metric is None:
                    metric = _METRIC_TYPES[kind](name)
                    self._metrics[name] = metric
        if metric.kind != kind:
            raise MetricKindError(
                f"metric {name!r} is a {metric.kind.value}, cannot record as {kind.value}"
            )
        return metric

    def declare(self, name: str, kind: MetricKind) -> Metric:
        """Create a metric ahead of its first sample (it then reports zero samples)."""
        return self._get_or_create(name, kind)

    def get(self, name: str) -> Metric | None:
        return self._metrics.get(name)

    def record(self, name: str, kind: MetricKind, value: Any = 1) -> None:
        """Add one sample to a metric, creating it on first use."""
        self._get_or_create(name, kind).add(value)

    def record_outcome(self, pattern: RequestPattern, outcome: Outcome) -> None:
        """Feed one request outcome into the built-in and bound metrics."""
        latency = float(outcome.latency_ms)
        self.record(HTTP_REQS, MetricKind.COUNTER, 1)
        self.record(HTTP_REQ_DURATION, MetricKind.TREND, latency)
        self.record(
            pattern_metric_name(HTTP_REQ_DURATION, pattern.name),
            MetricKind.TREND,
            latency,
        )
        self.record(HTTP_REQ_FAILED, MetricKind.RATE, not outcome.success)

        # Status check, plus the latency check when the pattern declares one.
        self.record(CHECKS, MetricKind.RATE, pattern.accepts(outcome.status))
        if pattern.max_latency_ms is not None:
            self.record(
                CHECKS,
                MetricKind.RATE,
                outcome.responded and latency < pattern.max_latency_ms,
            )

        for binding in pattern.metrics:
            value = _binding_value(binding.source, pattern, outcome)
            if value is None:
                continue
            if binding.kind == MetricKind.COUNTER:
                if value:
                    self.record(binding.metric, MetricKind.COUNTER, 1)
                else:
                    # Keep the counter visible (zero samples) even if it never fires.
                    self.declare(binding.metric, MetricKind.COUNTER)
            else:
                self.record(binding.metric, binding.kind, value)

    def summarize(self) -> MetricsSnapshot:
        """
        Immutable snapshot of every metric.

        Intended for the end-of-run sync point, after all workers have drained.
        Calling it mid-run is safe but each metric is captured independently.
        """
        with self._registry_lock:
            metrics = list(self._metrics.values())
        return MetricsSnapshot(metrics={m.name: m.summary() for m in metrics})


def _binding_value(
    source: MetricSource, pattern: RequestPattern, outcome: Outcome
) -> Any:
    if source == MetricSource.LATENCY:
        return outcome.latency_ms
    if source == MetricSource.LATENCY_OK:
        return outcome.latency_ms if outcome.success else None
    if source == MetricSource.FAILED:
        return not outcome.success
    if source == MetricSource.SUCCEEDED:
        return outcome.success
    # Cache hit inference from latency is a heuristic; only successful
    # responses are classified.
    if not outcome.success or pattern.hit_latency_ms is None:
        return None
    hit = outcome.latency_ms < pattern.hit_latency_ms
    if source == MetricSource.CACHE_HIT:
        return hit
    return not hit
