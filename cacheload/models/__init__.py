"""
Data models for cacheload.
"""

from cacheload.models.metrics import (
    MetricKind,
    MetricSummary,
    MetricsSnapshot,
    nearest_rank,
)
from cacheload.models.plan import (
    DEFAULT_PHASE,
    BatchSpec,
    ExecutorKind,
    HttpMethod,
    KeySpace,
    LoadPlan,
    MetricBinding,
    MetricSource,
    PhaseBoundary,
    PhaseTable,
    RequestPattern,
    Scenario,
    SleepKind,
    SleepPolicy,
    Stage,
    Threshold,
    ThresholdSpec,
    Workload,
)
from cacheload.models.outcome import NO_RESPONSE_STATUS, Outcome, RunResult, RunStatus
from cacheload.models.report import CacheMetricsReport

__all__ = [
    # Metrics
    "MetricKind",
    "MetricSummary",
    "MetricsSnapshot",
    "nearest_rank",
    # Plan
    "DEFAULT_PHASE",
    "BatchSpec",
    "ExecutorKind",
    "HttpMethod",
    "KeySpace",
    "LoadPlan",
    "MetricBinding",
    "MetricSource",
    "PhaseBoundary",
    "PhaseTable",
    "RequestPattern",
    "Scenario",
    "SleepKind",
    "SleepPolicy",
    "Stage",
    "Threshold",
    "ThresholdSpec",
    "Workload",
    # Outcomes
    "NO_RESPONSE_STATUS",
    "Outcome",
    "RunResult",
    "RunStatus",
    # Reports
    "CacheMetricsReport",
]
