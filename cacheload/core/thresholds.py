"""
Threshold parsing and evaluation.

A threshold is a pass/fail rule evaluated once, after the run, against the
final metric summaries. Expressions look like ``rate<0.01``, ``count>=100``,
``avg<200`` or ``p(95)<500``.
"""

from __future__ import annotations

import logging
import operator
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterable

from cacheload.models.metrics import MetricKind, MetricsSnapshot, MetricSummary

if TYPE_CHECKING:
    from cacheload.models.plan import Threshold

logger = logging.getLogger(__name__)

_EXPR_RE = re.compile(
    r"""^\s*
    (?P<selector>p\(\s*(?P<pct>\d+(?:\.\d+)?)\s*\)|[a-z]+)
    \s*(?P<op><=|>=|==|<|>)\s*
    (?P<bound>[-+]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][-+]?\d+)?)
    \s*$""",
    re.VERBOSE,
)

OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
}

# Aggregates each metric kind can be compared on.
SELECTORS_BY_KIND: dict[MetricKind, frozenset[str]] = {
    MetricKind.COUNTER: frozenset({"count"}),
    MetricKind.RATE: frozenset({"rate"}),
    MetricKind.TREND: frozenset({"percentile", "avg", "min", "max", "med"}),
}

_KNOWN_SELECTORS = frozenset().union(*SELECTORS_BY_KIND.values())


class ThresholdSyntaxError(ValueError):
    """Raised when a threshold expression cannot be parsed."""


@dataclass(frozen=True, slots=True)
class ThresholdExpression:
    """Parsed form of a threshold expression.

    Attributes:
        selector: Aggregate to compare (rate, count, percentile, avg, min, max, med)
        operator: One of <, <=, >, >=, ==
        bound: Right-hand side value
        percentile: Percentile for the ``percentile`` selector, else None
    """

    selector: str
    operator: str
    bound: float
    percentile: float | None = None

    def compare(self, observed: float) -> bool:
        return OPERATORS[self.operator](float(observed), self.bound)

    def describe(self) -> str:
        lhs = f"p({self.percentile:g})" if self.selector == "percentile" else self.selector
        return f"{lhs}{self.operator}{self.bound:g}"


def parse_threshold_expression(expression: str) -> ThresholdExpression:
    """Parse ``selector op value`` into a ThresholdExpression.

    Raises:
        ThresholdSyntaxError: On unknown selectors, operators or malformed input
    """
    match = _EXPR_RE.match(str(expression or ""))
    if match is None:
        raise ThresholdSyntaxError(f"Invalid threshold expression: {expression!r}")

    pct_raw = match.group("pct")
    if pct_raw is not None:
        pct = float(pct_raw)
        if not 0.0 <= pct <= 100.0:
            raise ThresholdSyntaxError(
                f"Percentile must be within 0-100 (got {pct_raw} in {expression!r})"
            )
        return ThresholdExpression(
            selector="percentile",
            operator=match.group("op"),
            bound=float(match.group("bound")),
            percentile=pct,
        )

    selector = match.group("selector")
    if selector not in _KNOWN_SELECTORS or selector == "percentile":
        raise ThresholdSyntaxError(
            f"Unknown threshold selector {selector!r} in {expression!r}"
        )
    return ThresholdExpression(
        selector=selector,
        operator=match.group("op"),
        bound=float(match.group("bound")),
    )


def observe(summary: MetricSummary, expr: ThresholdExpression) -> float | None:
    """Return the aggregate an expression compares, or None on a kind mismatch."""
    if expr.selector not in SELECTORS_BY_KIND[summary.kind]:
        return None
    if expr.selector == "count":
        return float(summary.total)
    if expr.selector == "rate":
        return summary.rate
    if expr.selector == "percentile":
        return summary.percentile(expr.percentile or 0.0)
    if expr.selector == "avg":
        return summary.mean()
    if expr.selector == "min":
        return summary.minimum()
    if expr.selector == "max":
        return summary.maximum()
    return summary.percentile(50)


@dataclass(frozen=True, slots=True)
class ThresholdResult:
    key: str
    metric: str
    expression: str
    passed: bool
    observed: float | None
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric,
            "expression": self.expression,
            "passed": bool(self.passed),
            "observed": self.observed,
            "reason": self.reason,
        }


@dataclass(frozen=True, slots=True)
class ThresholdVerdict:
    passed: bool
    per_threshold: dict[str, bool]
    results: tuple[ThresholdResult, ...] = ()

    @property
    def failed(self) -> list[ThresholdResult]:
        return [r for r in self.results if not r.passed]

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": bool(self.passed),
            "thresholds": {r.key: r.to_dict() for r in self.results},
        }


def _evaluate_one(threshold: Threshold, snapshot: MetricsSnapshot) -> ThresholdResult:
    expr = threshold.parsed
    summary = snapshot.get(threshold.metric)

    if summary is None or summary.empty:
        passed = bool(threshold.allow_empty)
        return ThresholdResult(
            key=threshold.key,
            metric=threshold.metric,
            expression=threshold.expression,
            passed=passed,
            observed=None,
            reason="no samples (allowed)" if passed else "no samples",
        )

    observed = observe(summary, expr)
    if observed is None:
        return ThresholdResult(
            key=threshold.key,
            metric=threshold.metric,
            expression=threshold.expression,
            passed=False,
            observed=None,
            reason=f"selector {expr.selector!r} does not apply to a {summary.kind.value}",
        )

    return ThresholdResult(
        key=threshold.key,
        metric=threshold.metric,
        expression=threshold.expression,
        passed=expr.compare(observed),
        observed=observed,
    )


def evaluate(
    thresholds: Iterable[Threshold], snapshot: MetricsSnapshot
) -> ThresholdVerdict:
    """
    Evaluate thresholds against a metrics snapshot.

    The verdict passes only if every threshold passes. A metric that is missing
    or has no samples fails its thresholds unless the threshold sets allow_empty.
    """
    results = tuple(_evaluate_one(t, snapshot) for t in thresholds)
    for r in results:
        if r.passed:
            logger.debug("Threshold passed: %s (observed=%s)", r.key, r.observed)
        else:
            logger.info(
                "Threshold failed: %s (observed=%s%s)",
                r.key,
                r.observed,
                f", {r.reason}" if r.reason else "",
            )
    return ThresholdVerdict(
        passed=all(r.passed for r in results),
        per_threshold={r.key: r.passed for r in results},
        results=results,
    )
