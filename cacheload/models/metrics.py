"""
Metric Snapshot Models

Immutable, order-independent views of the metrics recorded during a run.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Sequence


class MetricKind(str, Enum):
    """Supported metric kinds."""

    COUNTER = "counter"
    RATE = "rate"
    TREND = "trend"


def nearest_rank(sorted_values: Sequence[float], p: float) -> float:
    """
    Nearest-rank percentile of an already sorted sequence.

    Returns the value at rank ``ceil(p/100 * n) - 1``, clamped to the sequence.
    An empty sequence yields 0.0.
    """
    n = len(sorted_values)
    if n == 0:
        return 0.0
    # Rounding guards against float noise such as 0.07 * 100 == 7.000000000000001.
    rank = math.ceil(round(float(p) * n / 100.0, 9)) - 1
    rank = max(0, min(rank, n - 1))
    return float(sorted_values[rank])


@dataclass(frozen=True, slots=True)
class MetricSummary:
    """Final aggregate of one metric.

    Attributes:
        name: Metric name
        kind: Counter, Rate or Trend
        count: Number of samples recorded
        total: Counter sum (0.0 for other kinds)
        hits: Truthy samples of a Rate (0 for other kinds)
        values: Sorted Trend samples (empty for other kinds)
    """

    name: str
    kind: MetricKind
    count: int = 0
    total: float = 0.0
    hits: int = 0
    values: tuple[float, ...] = field(default_factory=tuple)

    @property
    def empty(self) -> bool:
        return self.count == 0

    @property
    def rate(self) -> float:
        if self.count == 0:
            return 0.0
        return self.hits / self.count

    def percentile(self, p: float) -> float:
        return nearest_rank(self.values, p)

    def mean(self) -> float:
        if not self.values:
            return 0.0
        return math.fsum(self.values) / len(self.values)

    def minimum(self) -> float:
        return float(self.values[0]) if self.values else 0.0

    def maximum(self) -> float:
        return float(self.values[-1]) if self.values else 0.0

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the run summary payload."""
        out: dict[str, Any] = {"kind": self.kind.value, "count": int(self.count)}
        if self.kind == MetricKind.COUNTER:
            out["total"] = float(self.total)
        elif self.kind == MetricKind.RATE:
            out["hits"] = int(self.hits)
            out["rate"] = float(self.rate)
        else:
            out.update(
                {
                    "avg": self.mean(),
                    "min": self.minimum(),
                    "med": self.percentile(50),
                    "max": self.maximum(),
                    "p(90)": self.percentile(90),
                    "p(95)": self.percentile(95),
                    "p(99)": self.percentile(99),
                }
            )
        return out


@dataclass(frozen=True, slots=True)
class MetricsSnapshot:
    """Read-only mapping of metric name to its final summary."""

    metrics: Mapping[str, MetricSummary] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def __post_init__(self) -> None:
        if not isinstance(self.metrics, MappingProxyType):
            object.__setattr__(self, "metrics", MappingProxyType(dict(self.metrics)))

    def __contains__(self, name: object) -> bool:
        return name in self.metrics

    def __iter__(self) -> Iterator[str]:
        return iter(self.metrics)

    def __len__(self) -> int:
        return len(self.metrics)

    def get(self, name: str) -> MetricSummary | None:
        return self.metrics.get(name)

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {name: self.metrics[name].to_dict() for name in sorted(self.metrics)}
