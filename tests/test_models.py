#!/usr/bin/env python3
"""
Tests for the plan, outcome and report models.

Validates plan construction, rejection of invalid combinations and
report parsing.
"""

import random
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from pydantic import ValidationError

from cacheload.core.profiles import PROFILES, get_profile
from cacheload.models import (
    BatchSpec,
    CacheMetricsReport,
    ExecutorKind,
    HttpMethod,
    KeySpace,
    LoadPlan,
    MetricBinding,
    MetricKind,
    MetricSource,
    Outcome,
    PhaseBoundary,
    PhaseTable,
    RequestPattern,
    RunResult,
    RunStatus,
    Scenario,
    SleepPolicy,
    Stage,
    ThresholdSpec,
    Workload,
)


def _workload(*weights: float) -> Workload:
    return Workload(
        patterns=[
            RequestPattern(name=f"p{i}", weight=w, path=f"/p{i}")
            for i, w in enumerate(weights)
        ]
    )


def _ramping(name: str = "ramp", **overrides) -> Scenario:
    data = {
        "name": name,
        "executor": ExecutorKind.RAMPING_WORKERS,
        "stages": [Stage(duration_seconds=30, target=50)],
        "workloads": {"default": _workload(1.0)},
    }
    data.update(overrides)
    return Scenario(**data)


def test_constant_workers_expands_to_single_stage():
    scenario = Scenario(
        name="steady",
        executor="constant-workers",
        workers=300,
        duration_seconds=180,
        start_offset_seconds=300,
        workloads={"default": _workload(1.0)},
    )
    assert scenario.stages == [Stage(duration_seconds=180, target=300)]
    assert scenario.end_seconds == 480
    assert scenario.peak_workers == 300


def test_constant_workers_accepts_enum_executor():
    scenario = Scenario(
        name="steady",
        executor=ExecutorKind.CONSTANT_WORKERS,
        workers=3,
        duration_seconds=10,
        workloads={"default": _workload(1.0)},
    )
    assert len(scenario.stages) == 1


def test_ramping_requires_stages():
    with pytest.raises(ValidationError, match="requires stages"):
        _ramping(stages=[])


def test_negative_stage_duration_rejected():
    with pytest.raises(ValidationError):
        Stage(duration_seconds=-1, target=5)


def test_per_worker_iterations_requires_workers_and_iterations():
    with pytest.raises(ValidationError, match="requires workers and iterations"):
        Scenario(
            name="warmup",
            executor=ExecutorKind.PER_WORKER_ITERATIONS,
            workers=5,
            workloads={"default": _workload(1.0)},
        )
    with pytest.raises(ValidationError):
        Scenario(
            name="warmup",
            executor=ExecutorKind.PER_WORKER_ITERATIONS,
            workers=0,
            iterations=20,
            workloads={"default": _workload(1.0)},
        )


def test_per_worker_iterations_span_uses_max_duration():
    scenario = Scenario(
        name="warmup",
        executor=ExecutorKind.PER_WORKER_ITERATIONS,
        workers=5,
        iterations=20,
        start_offset_seconds=10,
        workloads={"default": _workload(1.0)},
    )
    assert scenario.span_seconds == 600
    assert scenario.end_seconds == 610
    assert scenario.peak_workers == 5


def test_workload_weights_normalized():
    workload = _workload(5, 3, 2)
    assert workload.normalized_weights() == pytest.approx([0.5, 0.3, 0.2])
    assert sum(workload.normalized_weights()) == pytest.approx(1.0)


def test_workload_rejects_zero_total_and_negative_weights():
    with pytest.raises(ValidationError, match="positive total"):
        _workload(0, 0)
    with pytest.raises(ValidationError):
        _workload(1, -1)


def test_workload_rejects_duplicate_pattern_names():
    with pytest.raises(ValidationError, match="unique"):
        Workload(
            patterns=[
                RequestPattern(name="user", path="/a"),
                RequestPattern(name="user", path="/b"),
            ]
        )


def test_workload_for_falls_back_to_default_then_first():
    normal, spike = _workload(1.0), _workload(2.0)
    scenario = _ramping(workloads={"normal": normal, "default": spike})
    assert scenario.workload_for("normal") is normal
    assert scenario.workload_for("recovery") is spike

    no_default = _ramping(workloads={"normal": normal, "spike": spike})
    assert no_default.workload_for("recovery") is normal


def test_pattern_key_placeholder_requires_key_space():
    with pytest.raises(ValidationError, match="key_space"):
        RequestPattern(name="user", path="/api/cache/users/{key}")


def test_batch_requires_post():
    with pytest.raises(ValidationError, match="POST"):
        RequestPattern(
            name="batch",
            path="/api/cache/users/batch",
            key_space=KeySpace(prefix="user", size=10),
            batch=BatchSpec(min_size=5, max_size=5),
        )


def test_cache_binding_requires_hit_latency():
    with pytest.raises(ValidationError, match="hit_latency_ms"):
        RequestPattern(
            name="user",
            path="/u",
            metrics=[
                MetricBinding(
                    metric="cache_hit_rate", kind=MetricKind.RATE, source=MetricSource.CACHE_HIT
                )
            ],
        )


def test_latency_binding_requires_trend():
    with pytest.raises(ValidationError, match="trend"):
        MetricBinding(metric="x", kind=MetricKind.RATE, source=MetricSource.LATENCY)


def test_pattern_accepts_inclusive_range():
    pattern = RequestPattern(
        name="spike", path="/x", accept_status_min=200, accept_status_max=399
    )
    assert pattern.accepts(200)
    assert pattern.accepts(399)
    assert not pattern.accepts(400)
    assert not pattern.accepts(0)


def test_key_space_hot_size():
    keys = KeySpace(prefix="user", size=50, hot_size=5)
    rng = random.Random(7)
    drawn = {keys.pick(rng) for _ in range(200)}
    assert drawn <= {f"user{n}" for n in range(1, 6)}
    assert keys.head(3) == ["user1", "user2", "user3"]

    with pytest.raises(ValidationError, match="hot_size"):
        KeySpace(prefix="user", size=5, hot_size=10)


def test_batch_spec_sequential_and_random():
    keys = KeySpace(prefix="user", size=1000)
    rng = random.Random(1)
    assert BatchSpec(min_size=5, max_size=5, sequential=True).build(keys, rng) == [
        "user1", "user2", "user3", "user4", "user5",
    ]
    batch = BatchSpec(min_size=5, max_size=24).build(keys, rng)
    assert 5 <= len(batch) <= 24
    with pytest.raises(ValidationError, match="max_size"):
        BatchSpec(min_size=10, max_size=5)


def test_sleep_policies():
    rng = random.Random(3)
    assert SleepPolicy().duration(rng) == 0.0
    assert SleepPolicy.fixed(0.1).duration(rng) == 0.1
    for _ in range(50):
        assert 1.0 <= SleepPolicy.uniform(1.0, 3.0).duration(rng) <= 3.0


def test_phase_table_must_increase():
    with pytest.raises(ValidationError, match="strictly increasing"):
        PhaseTable(
            boundaries=[
                PhaseBoundary(name="normal", upper_bound_seconds=60),
                PhaseBoundary(name="spike", upper_bound_seconds=60),
            ],
            open_phase="recovery",
        )


def test_plan_thresholds_parsed_at_construction():
    plan = LoadPlan(
        name="plan",
        scenarios=[_ramping()],
        thresholds={
            "http_req_duration": ["p(95)<500", "p(99)<1000"],
            "cache_hit_rate": [ThresholdSpec(threshold="rate>0.8", allow_empty=True)],
        },
    )
    keys = [t.key for t in plan.threshold_list()]
    assert keys == [
        "http_req_duration: p(95)<500",
        "http_req_duration: p(99)<1000",
        "cache_hit_rate: rate>0.8",
    ]
    assert plan.threshold_list()[2].allow_empty is True

    with pytest.raises(ValidationError):
        LoadPlan(
            name="plan",
            scenarios=[_ramping()],
            thresholds={"http_req_duration": ["p95 less than 500"]},
        )


def test_plan_rejects_duplicate_scenario_names():
    with pytest.raises(ValidationError, match="unique"):
        LoadPlan(name="plan", scenarios=[_ramping("a"), _ramping("a")])


def test_plan_is_immutable():
    plan = LoadPlan(name="plan", scenarios=[_ramping()])
    with pytest.raises(ValidationError):
        plan.name = "other"


def test_plan_loads_from_json():
    raw = """
    {
      "name": "json-plan",
      "scenarios": [
        {
          "name": "steady",
          "executor": "constant-workers",
          "workers": 2,
          "duration_seconds": 5,
          "workloads": {
            "default": {
              "patterns": [
                {"name": "user", "path": "/api/cache/users/{key}",
                 "key_space": {"prefix": "user", "size": 100}},
                {"name": "batch", "method": "POST", "path": "/api/cache/users/batch",
                 "key_space": {"prefix": "user", "size": 100},
                 "batch": {"min_size": 5, "max_size": 5, "sequential": true}}
              ],
              "sleep": {"kind": "uniform", "min_seconds": 1, "max_seconds": 3}
            }
          }
        }
      ],
      "thresholds": {
        "http_req_failed": ["rate<0.01"],
        "cache_hit_rate": [{"threshold": "rate>0.8", "allow_empty": true}]
      },
      "phases": {"boundaries": [{"name": "normal", "upper_bound_seconds": 60}],
                 "open_phase": "spike"}
    }
    """
    plan = LoadPlan.model_validate_json(raw)
    scenario = plan.scenarios[0]
    assert scenario.executor == ExecutorKind.CONSTANT_WORKERS
    assert scenario.stages[0].target == 2
    assert scenario.workloads["default"].patterns[1].method == HttpMethod.POST
    assert len(plan.threshold_list()) == 2


@pytest.mark.parametrize("name", sorted(PROFILES))
def test_builtin_profiles_build(name):
    plan = get_profile(name)
    assert plan.name == name
    assert plan.scenarios
    assert plan.threshold_list()


def test_performance_profile_shape():
    plan = get_profile("performance")
    by_name = {s.name: s for s in plan.scenarios}
    assert by_name["warmup"].executor == ExecutorKind.PER_WORKER_ITERATIONS
    assert by_name["ramp_up"].start_offset_seconds == 30
    assert by_name["stress"].stages == [Stage(duration_seconds=180, target=300)]
    assert by_name["spike"].end_seconds == 560
    weights = [p.weight for p in by_name["ramp_up"].workloads["default"].patterns]
    assert sum(weights) == pytest.approx(1.0)


def test_unknown_profile():
    with pytest.raises(KeyError, match="Unknown profile"):
        get_profile("soak")


def test_outcome_is_frozen():
    outcome = Outcome(pattern="user", status=200, latency_ms=12.5, success=True)
    assert outcome.responded
    with pytest.raises(AttributeError):
        outcome.status = 500  # type: ignore[misc]
    assert not Outcome(pattern="user", status=0, latency_ms=5000, success=False).responded


def test_run_result_serializes_status_value():
    from datetime import UTC, datetime

    result = RunResult(
        plan_name="p",
        base_url="http://svc",
        status=RunStatus.COMPLETED,
        start_time=datetime.now(UTC),
    )
    assert result.status == "completed"
    assert '"status":"completed"' in result.model_dump_json()


def test_cache_metrics_report_parses_payload():
    report = CacheMetricsReport.model_validate(
        {
            "payload": {
                "redisMetrics": {"hitRate": 0.9, "hits": 9},
                "summary": {"overallHitRate": 0.75},
                "localMetrics": {"hitRate": 0.4},
            }
        }
    )
    assert report.redis_hit_rate == 0.9
    assert report.overall_hit_rate == 0.75
    assert report.to_dict()["payload"]["localMetrics"] == {"hitRate": 0.4}


def test_cache_metrics_report_rejects_out_of_range_rate():
    with pytest.raises(ValidationError):
        CacheMetricsReport.model_validate(
            {"payload": {"redisMetrics": {"hitRate": 1.5}, "summary": {"overallHitRate": 0.5}}}
        )
