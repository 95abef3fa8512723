"""
Load Plan Models

Defines Pydantic models for load test plans including:
- Request patterns (endpoint, weight, timeout, metric bindings)
- Workloads (weighted pattern mix, think time)
- Scenarios (executor kind, stages, start offset)
- Phase tables and thresholds
"""

from __future__ import annotations

import random
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from cacheload.models.metrics import MetricKind

if TYPE_CHECKING:
    from cacheload.core.thresholds import ThresholdExpression

DEFAULT_PHASE = "default"


class ExecutorKind(str, Enum):
    """How a scenario drives concurrency."""

    PER_WORKER_ITERATIONS = "per-worker-iterations"
    RAMPING_WORKERS = "ramping-workers"
    CONSTANT_WORKERS = "constant-workers"


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"


class Stage(BaseModel):
    """A time-bounded segment ramping toward a target worker count."""

    model_config = ConfigDict(frozen=True)

    duration_seconds: float = Field(..., ge=0, description="Stage duration")
    target: int = Field(..., ge=0, description="Worker count at the end of the stage")


class KeySpace(BaseModel):
    """
    Pool of identifiers a pattern draws from.

    Keys are ``{prefix}{n}`` with n in 1..size. Setting hot_size restricts draws
    to the first hot_size keys, which concentrates traffic on popular entries.
    """

    model_config = ConfigDict(frozen=True)

    prefix: str = Field(..., description="Key prefix, e.g. 'user'")
    size: int = Field(..., ge=1, description="Number of distinct keys")
    hot_size: Optional[int] = Field(
        None, ge=1, description="Only draw from the first N keys"
    )

    @model_validator(mode="after")
    def validate_hot_size(self):
        if self.hot_size is not None and self.hot_size > self.size:
            raise ValueError("hot_size must be <= size")
        return self

    def key(self, n: int) -> str:
        return f"{self.prefix}{n}"

    def pick(self, rng: random.Random) -> str:
        upper = self.hot_size or self.size
        return self.key(rng.randint(1, upper))

    def head(self, count: int) -> list[str]:
        return [self.key(n) for n in range(1, min(count, self.size) + 1)]


class BatchSpec(BaseModel):
    """JSON array body of keys sent with a batch request."""

    model_config = ConfigDict(frozen=True)

    min_size: int = Field(1, ge=1, description="Smallest batch")
    max_size: int = Field(1, ge=1, description="Largest batch")
    sequential: bool = Field(
        False, description="Use the first N keys instead of random draws"
    )

    @field_validator("max_size")
    @classmethod
    def validate_sizes(cls, v, info):
        min_size = info.data.get("min_size", 1)
        if v < min_size:
            raise ValueError("max_size must be >= min_size")
        return v

    def build(self, key_space: KeySpace, rng: random.Random) -> list[str]:
        size = rng.randint(self.min_size, self.max_size)
        if self.sequential:
            return key_space.head(size)
        return [key_space.pick(rng) for _ in range(size)]


class MetricSource(str, Enum):
    """Which aspect of an outcome a metric binding records."""

    LATENCY = "latency"  # every latency sample
    LATENCY_OK = "latency_ok"  # latency of successful requests only
    FAILED = "failed"
    SUCCEEDED = "succeeded"
    CACHE_HIT = "cache_hit"  # latency below the pattern's hit_latency_ms
    CACHE_MISS = "cache_miss"


_LATENCY_SOURCES = {MetricSource.LATENCY, MetricSource.LATENCY_OK}
_CACHE_SOURCES = {MetricSource.CACHE_HIT, MetricSource.CACHE_MISS}


class MetricBinding(BaseModel):
    """Routes part of each outcome into a custom metric."""

    model_config = ConfigDict(frozen=True)

    metric: str = Field(..., min_length=1, description="Target metric name")
    kind: MetricKind = Field(..., description="Target metric kind")
    source: MetricSource = Field(..., description="Outcome field to record")

    @model_validator(mode="after")
    def validate_kind_for_source(self):
        if self.source in _LATENCY_SOURCES and self.kind != MetricKind.TREND:
            raise ValueError(f"{self.source.value} bindings require a trend metric")
        if self.source not in _LATENCY_SOURCES and self.kind == MetricKind.TREND:
            raise ValueError(f"{self.source.value} bindings require a rate or counter")
        return self


class RequestPattern(BaseModel):
    """
    A named operation against the cache service.

    One iteration of a worker issues exactly one request built from its pattern.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Pattern name")
    weight: float = Field(1.0, ge=0, description="Selection weight")
    method: HttpMethod = Field(HttpMethod.GET, description="HTTP method")
    path: str = Field(..., description="Path, may contain a {key} placeholder")
    key_space: Optional[KeySpace] = Field(None, description="Keys for {key}/batches")
    batch: Optional[BatchSpec] = Field(None, description="JSON array body spec")

    accept_status_min: int = Field(200, ge=0, description="Lowest accepted status")
    accept_status_max: int = Field(200, ge=0, description="Highest accepted status")
    timeout_seconds: Optional[float] = Field(
        None, gt=0, description="Request timeout (None = settings default)"
    )
    max_latency_ms: Optional[float] = Field(
        None, gt=0, description="Latency check recorded into 'checks'"
    )
    hit_latency_ms: Optional[float] = Field(
        None,
        gt=0,
        description="Latency under which a response is counted as a cache hit",
    )

    tags: Dict[str, str] = Field(default_factory=dict, description="Outcome tags")
    metrics: List[MetricBinding] = Field(
        default_factory=list, description="Custom metric bindings"
    )

    @model_validator(mode="after")
    def validate_pattern(self):
        if self.accept_status_max < self.accept_status_min:
            raise ValueError("accept_status_max must be >= accept_status_min")
        if "{key}" in self.path and self.key_space is None:
            raise ValueError(f"pattern {self.name!r}: path uses {{key}} without key_space")
        if self.batch is not None:
            if self.method != HttpMethod.POST:
                raise ValueError(f"pattern {self.name!r}: batch bodies require POST")
            if self.key_space is None:
                raise ValueError(f"pattern {self.name!r}: batch requires key_space")
        if self.hit_latency_ms is None and any(
            b.source in _CACHE_SOURCES for b in self.metrics
        ):
            raise ValueError(
                f"pattern {self.name!r}: cache_hit/cache_miss bindings need hit_latency_ms"
            )
        return self

    def accepts(self, status: int) -> bool:
        return self.accept_status_min <= int(status) <= self.accept_status_max


class SleepKind(str, Enum):
    NONE = "none"
    FIXED = "fixed"
    UNIFORM = "uniform"


class SleepPolicy(BaseModel):
    """Think time between two iterations of a worker."""

    model_config = ConfigDict(frozen=True)

    kind: SleepKind = Field(SleepKind.NONE, description="Sleep policy")
    seconds: float = Field(0.0, ge=0, description="Fixed sleep")
    min_seconds: float = Field(0.0, ge=0, description="Uniform range lower bound")
    max_seconds: float = Field(0.0, ge=0, description="Uniform range upper bound")

    @model_validator(mode="after")
    def validate_range(self):
        if self.kind == SleepKind.UNIFORM and self.max_seconds < self.min_seconds:
            raise ValueError("max_seconds must be >= min_seconds")
        return self

    @classmethod
    def fixed(cls, seconds: float) -> SleepPolicy:
        return cls(kind=SleepKind.FIXED, seconds=seconds)

    @classmethod
    def uniform(cls, min_seconds: float, max_seconds: float) -> SleepPolicy:
        return cls(kind=SleepKind.UNIFORM, min_seconds=min_seconds, max_seconds=max_seconds)

    def duration(self, rng: random.Random) -> float:
        if self.kind == SleepKind.FIXED:
            return float(self.seconds)
        if self.kind == SleepKind.UNIFORM:
            return rng.uniform(self.min_seconds, self.max_seconds)
        return 0.0


class Workload(BaseModel):
    """Weighted pattern mix plus think time."""

    model_config = ConfigDict(frozen=True)

    patterns: List[RequestPattern] = Field(..., min_length=1)
    sleep: SleepPolicy = Field(default_factory=SleepPolicy)

    @model_validator(mode="after")
    def validate_weights(self):
        total = sum(p.weight for p in self.patterns)
        if total <= 0:
            raise ValueError("workload pattern weights must have a positive total")
        names = [p.name for p in self.patterns]
        if len(set(names)) != len(names):
            raise ValueError("workload pattern names must be unique")
        return self

    @property
    def total_weight(self) -> float:
        return float(sum(p.weight for p in self.patterns))

    def normalized_weights(self) -> list[float]:
        """Weights scaled to sum to 1.0, in declaration order."""
        total = self.total_weight
        return [p.weight / total for p in self.patterns]


class Scenario(BaseModel):
    """
    Configuration for one load scenario.

    ramping-workers: ramp from start_workers through each stage target.
    constant-workers: hold `workers` for `duration_seconds` (kept as one stage).
    per-worker-iterations: `workers` run `iterations` each, bounded by
    max_duration_seconds.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Scenario name")
    executor: ExecutorKind = Field(..., description="Executor kind")

    stages: List[Stage] = Field(default_factory=list, description="Ramp stages")
    start_workers: int = Field(0, ge=0, description="Initial workers (ramping)")

    workers: Optional[int] = Field(None, ge=1, description="Fixed worker count")
    duration_seconds: Optional[float] = Field(
        None, ge=0, description="Duration (constant-workers)"
    )
    iterations: Optional[int] = Field(
        None, ge=1, description="Iterations per worker (per-worker-iterations)"
    )
    max_duration_seconds: float = Field(
        600.0, gt=0, description="Hard stop for per-worker-iterations"
    )

    start_offset_seconds: float = Field(0.0, ge=0, description="Delay from run start")
    tags: Dict[str, str] = Field(default_factory=dict, description="Outcome tags")
    workloads: Dict[str, Workload] = Field(
        ..., min_length=1, description="Workload per phase ('default' = fallback)"
    )

    @model_validator(mode="before")
    @classmethod
    def expand_constant_stage(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        raw = data.get("executor")
        executor = raw.value if isinstance(raw, ExecutorKind) else str(raw or "").strip()
        if executor == ExecutorKind.CONSTANT_WORKERS.value and not data.get("stages"):
            workers = data.get("workers")
            duration = data.get("duration_seconds")
            if workers is not None and duration is not None:
                data = dict(data)
                data["stages"] = [{"duration_seconds": duration, "target": workers}]
        return data

    @model_validator(mode="after")
    def validate_executor_requirements(self):
        if self.executor == ExecutorKind.RAMPING_WORKERS:
            if not self.stages:
                raise ValueError(f"scenario {self.name!r}: ramping-workers requires stages")
        elif self.executor == ExecutorKind.CONSTANT_WORKERS:
            if self.workers is None or self.duration_seconds is None:
                raise ValueError(
                    f"scenario {self.name!r}: constant-workers requires workers and duration_seconds"
                )
            if len(self.stages) != 1 or self.stages[0].target != self.workers:
                raise ValueError(
                    f"scenario {self.name!r}: constant-workers takes a single stage of `workers`"
                )
        elif self.executor == ExecutorKind.PER_WORKER_ITERATIONS:
            if self.workers is None or self.iterations is None:
                raise ValueError(
                    f"scenario {self.name!r}: per-worker-iterations requires workers and iterations"
                )
            if self.stages:
                raise ValueError(
                    f"scenario {self.name!r}: per-worker-iterations does not take stages"
                )
        return self

    @property
    def span_seconds(self) -> float:
        """Active duration, excluding the start offset."""
        if self.executor == ExecutorKind.PER_WORKER_ITERATIONS:
            return float(self.max_duration_seconds)
        return float(sum(s.duration_seconds for s in self.stages))

    @property
    def end_seconds(self) -> float:
        return float(self.start_offset_seconds) + self.span_seconds

    @property
    def peak_workers(self) -> int:
        if self.executor == ExecutorKind.PER_WORKER_ITERATIONS:
            return int(self.workers or 0)
        return max([self.start_workers] + [s.target for s in self.stages])

    def workload_for(self, phase: str) -> Workload:
        workload = self.workloads.get(phase)
        if workload is None:
            workload = self.workloads.get(DEFAULT_PHASE)
        if workload is None:
            workload = next(iter(self.workloads.values()))
        return workload


class PhaseBoundary(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    upper_bound_seconds: float = Field(..., gt=0, description="Exclusive upper bound")


class PhaseTable(BaseModel):
    """
    Ordered (phase, upper bound) pairs plus the open-ended final phase.

    Elapsed time maps to the first boundary it falls under.
    """

    model_config = ConfigDict(frozen=True)

    boundaries: List[PhaseBoundary] = Field(default_factory=list)
    open_phase: str = Field(..., min_length=1, description="Phase after the last bound")

    @field_validator("boundaries")
    @classmethod
    def validate_increasing(cls, v):
        previous = 0.0
        for boundary in v:
            if boundary.upper_bound_seconds <= previous:
                raise ValueError("phase upper bounds must be strictly increasing")
            previous = boundary.upper_bound_seconds
        return v


class ThresholdSpec(BaseModel):
    """Object form of a threshold entry."""

    model_config = ConfigDict(frozen=True)

    threshold: str = Field(..., description="Expression, e.g. p(95)<500")
    allow_empty: bool = Field(
        False, description="Pass when the metric has no samples"
    )


class Threshold(BaseModel):
    """A pass/fail rule on one metric's final aggregate."""

    model_config = ConfigDict(frozen=True)

    metric: str = Field(..., min_length=1)
    expression: str = Field(..., min_length=1)
    allow_empty: bool = False

    @field_validator("expression")
    @classmethod
    def validate_expression(cls, v: str) -> str:
        from cacheload.core.thresholds import parse_threshold_expression

        parse_threshold_expression(v)
        return v.strip()

    @property
    def parsed(self) -> ThresholdExpression:
        from cacheload.core.thresholds import parse_threshold_expression

        return parse_threshold_expression(self.expression)

    @property
    def key(self) -> str:
        return f"{self.metric}: {self.expression}"


class LoadPlan(BaseModel):
    """
    The static configuration of one run: scenarios, thresholds, phases and
    lifecycle options. Built once at process start and never modified.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Plan name")
    description: Optional[str] = Field(None, description="Plan description")
    scenarios: List[Scenario] = Field(..., min_length=1)
    thresholds: Dict[str, List[Union[str, ThresholdSpec]]] = Field(
        default_factory=dict, description="metric -> threshold expressions"
    )
    phases: Optional[PhaseTable] = Field(None, description="Elapsed-time phase table")

    setup_settle_seconds: float = Field(
        0.0, ge=0, description="Wait after a successful warm-up"
    )
    capture_baseline_report: bool = Field(
        False, description="Fetch the metrics report once after setup"
    )
    report_hit_rate_target: Optional[float] = Field(
        None, ge=0, le=1, description="Overall hit rate expected in the final report"
    )

    @model_validator(mode="after")
    def validate_plan(self):
        names = [s.name for s in self.scenarios]
        if len(set(names)) != len(names):
            raise ValueError("scenario names must be unique")
        # Parse every threshold now so a bad expression fails at load time.
        self.threshold_list()
        return self

    def threshold_list(self) -> list[Threshold]:
        out: list[Threshold] = []
        for metric, entries in self.thresholds.items():
            for entry in entries:
                if isinstance(entry, ThresholdSpec):
                    out.append(
                        Threshold(
                            metric=metric,
                            expression=entry.threshold,
                            allow_empty=entry.allow_empty,
                        )
                    )
                else:
                    out.append(Threshold(metric=metric, expression=str(entry)))
        return out

    @property
    def end_seconds(self) -> float:
        return max(s.end_seconds for s in self.scenarios)
