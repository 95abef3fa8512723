"""
Built-in Load Profiles

Ready-made plans for the cache service:

- performance: warm-up, ramp, sustained stress and a short spike, with
  latency, failure and cache hit-rate thresholds
- spike: normal -> 1000-worker spike -> recovery, with per-phase workloads
- stress: ramp to 2000 workers with lenient latency thresholds
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional

from cacheload.connectors.cache_api import (
    BATCH_USERS_PATH,
    HOTDATA_PATH,
    METRICS_REPORT_PATH,
    PRODUCT_PATH,
    USER_PATH,
)
from cacheload.models.metrics import MetricKind
from cacheload.models.plan import (
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
    SleepPolicy,
    Stage,
    Workload,
)


def _stages(*pairs: tuple[float, int]) -> List[Stage]:
    return [Stage(duration_seconds=d, target=t) for d, t in pairs]


def _get(
    name: str,
    path: str,
    key_space: KeySpace,
    *,
    weight: float,
    tags: Dict[str, str],
    max_latency_ms: Optional[float] = None,
    timeout_seconds: Optional[float] = None,
    metrics: Optional[List[MetricBinding]] = None,
    **extra,
) -> RequestPattern:
    return RequestPattern(
        name=name,
        weight=weight,
        method=HttpMethod.GET,
        path=path,
        key_space=key_space,
        max_latency_ms=max_latency_ms,
        timeout_seconds=timeout_seconds,
        tags=tags,
        metrics=metrics or [],
        **extra,
    )


# ============================================================================
# performance
# ============================================================================

CACHE_HIT_LATENCY_MS = 50.0


def _performance_cache_bindings() -> List[MetricBinding]:
    return [
        MetricBinding(
            metric="cache_response_time", kind=MetricKind.TREND, source=MetricSource.LATENCY
        ),
        MetricBinding(
            metric="cache_hit_rate", kind=MetricKind.RATE, source=MetricSource.CACHE_HIT
        ),
        MetricBinding(
            metric="db_fallback_count",
            kind=MetricKind.COUNTER,
            source=MetricSource.CACHE_MISS,
        ),
    ]


def _performance_mix() -> Workload:
    users = KeySpace(prefix="user", size=1000)
    products = KeySpace(prefix="product", size=500)
    hotdata = KeySpace(prefix="hotdata", size=100)
    multilevel = {"cache_type": "multilevel"}
    return Workload(
        patterns=[
            _get(
                "user", USER_PATH, users, weight=0.45,
                tags={"api": "user", **multilevel},
                max_latency_ms=500, hit_latency_ms=CACHE_HIT_LATENCY_MS,
                metrics=_performance_cache_bindings(),
            ),
            _get(
                "product", PRODUCT_PATH, products, weight=0.27,
                tags={"api": "product", **multilevel},
                max_latency_ms=500, hit_latency_ms=CACHE_HIT_LATENCY_MS,
                metrics=_performance_cache_bindings(),
            ),
            _get(
                "hotdata", HOTDATA_PATH, hotdata, weight=0.135,
                tags={"api": "hotdata", **multilevel},
                max_latency_ms=100,
            ),
            RequestPattern(
                name="batch",
                weight=0.045,
                method=HttpMethod.POST,
                path=BATCH_USERS_PATH,
                key_space=users,
                batch=BatchSpec(min_size=5, max_size=5, sequential=True),
                max_latency_ms=1000,
                tags={"api": "batch", **multilevel},
            ),
            RequestPattern(
                name="metrics",
                weight=0.10,
                path=METRICS_REPORT_PATH,
                tags={"api": "metrics", "cache_type": "monitoring"},
            ),
        ],
        sleep=SleepPolicy.uniform(1.0, 3.0),
    )


def _performance_warmup_mix() -> Workload:
    # Top 100 users and top 50 products only, to preload the hottest keys.
    multilevel = {"cache_type": "multilevel"}
    return Workload(
        patterns=[
            _get(
                "user", USER_PATH, KeySpace(prefix="user", size=1000, hot_size=100),
                weight=0.5, tags={"api": "user", **multilevel},
                max_latency_ms=500,
                metrics=[
                    MetricBinding(
                        metric="cache_response_time",
                        kind=MetricKind.TREND,
                        source=MetricSource.LATENCY,
                    )
                ],
            ),
            _get(
                "product", PRODUCT_PATH, KeySpace(prefix="product", size=500, hot_size=50),
                weight=0.5, tags={"api": "product", **multilevel},
                max_latency_ms=500,
                metrics=[
                    MetricBinding(
                        metric="cache_response_time",
                        kind=MetricKind.TREND,
                        source=MetricSource.LATENCY,
                    )
                ],
            ),
        ],
        sleep=SleepPolicy.uniform(1.0, 3.0),
    )


def performance_plan() -> LoadPlan:
    mix = _performance_mix()
    return LoadPlan(
        name="performance",
        description="Warm-up, ramp, sustained stress and spike against the multi-level cache",
        scenarios=[
            Scenario(
                name="warmup",
                executor=ExecutorKind.PER_WORKER_ITERATIONS,
                workers=5,
                iterations=20,
                tags={"phase": "warmup"},
                workloads={"default": _performance_warmup_mix()},
            ),
            Scenario(
                name="ramp_up",
                executor=ExecutorKind.RAMPING_WORKERS,
                start_workers=10,
                stages=_stages((30, 50), (60, 100), (120, 200), (60, 100), (30, 0)),
                start_offset_seconds=30,
                tags={"phase": "ramp_up"},
                workloads={"default": mix},
            ),
            Scenario(
                name="stress",
                executor=ExecutorKind.CONSTANT_WORKERS,
                workers=300,
                duration_seconds=180,
                start_offset_seconds=300,
                tags={"phase": "stress"},
                workloads={"default": mix},
            ),
            Scenario(
                name="spike",
                executor=ExecutorKind.RAMPING_WORKERS,
                start_workers=50,
                stages=_stages((10, 500), (30, 500), (10, 50)),
                start_offset_seconds=510,
                tags={"phase": "spike"},
                workloads={"default": mix},
            ),
        ],
        thresholds={
            "http_req_duration": ["p(95)<500", "p(99)<1000"],
            "http_req_failed": ["rate<0.01"],
            "cache_hit_rate": ["rate>0.8"],
            "cache_response_time": ["p(95)<100"],
        },
        setup_settle_seconds=5,
    )


# ============================================================================
# spike
# ============================================================================


def _spike_workloads() -> Dict[str, Workload]:
    users = KeySpace(prefix="user", size=50)
    products = KeySpace(prefix="product", size=20)

    normal = Workload(
        patterns=[
            _get(
                "user", USER_PATH, users, weight=0.7,
                tags={"traffic_type": "normal", "api": "user"},
                max_latency_ms=1000, timeout_seconds=5,
            ),
            _get(
                "product", PRODUCT_PATH, products, weight=0.3,
                tags={"traffic_type": "normal", "api": "product"},
                max_latency_ms=1000, timeout_seconds=5,
            ),
        ],
        sleep=SleepPolicy.uniform(1.0, 4.0),
    )

    spike_bindings = [
        MetricBinding(
            metric="spike_response_time", kind=MetricKind.TREND, source=MetricSource.LATENCY
        ),
        MetricBinding(
            metric="spike_error_rate", kind=MetricKind.RATE, source=MetricSource.FAILED
        ),
    ]
    # Traffic concentrates on the top 5 users and top 3 products.
    spike = Workload(
        patterns=[
            _get(
                "user", USER_PATH, KeySpace(prefix="user", size=50, hot_size=5),
                weight=0.8, tags={"traffic_type": "spike", "api": "user"},
                max_latency_ms=5000, timeout_seconds=10,
                accept_status_min=200, accept_status_max=399,
                metrics=spike_bindings,
            ),
            _get(
                "product", PRODUCT_PATH, KeySpace(prefix="product", size=20, hot_size=3),
                weight=0.2, tags={"traffic_type": "spike", "api": "product"},
                max_latency_ms=5000, timeout_seconds=10,
                accept_status_min=200, accept_status_max=399,
                metrics=spike_bindings,
            ),
        ],
        sleep=SleepPolicy.uniform(0.0, 0.5),
    )

    recovery = Workload(
        patterns=[
            _get(
                "user", USER_PATH, users, weight=1.0,
                tags={"traffic_type": "recovery", "api": "user"},
                max_latency_ms=2000, timeout_seconds=8,
                metrics=[
                    MetricBinding(
                        metric="recovery_time",
                        kind=MetricKind.TREND,
                        source=MetricSource.LATENCY_OK,
                    )
                ],
            ),
        ],
        sleep=SleepPolicy.uniform(1.0, 3.0),
    )
    return {"normal": normal, "spike": spike, "recovery": recovery, "default": normal}


def spike_plan() -> LoadPlan:
    return LoadPlan(
        name="spike",
        description="Sudden 100x traffic spike on popular keys, then recovery",
        scenarios=[
            Scenario(
                name="traffic_spike",
                executor=ExecutorKind.RAMPING_WORKERS,
                start_workers=10,
                stages=_stages((60, 10), (30, 1000), (120, 1000), (30, 10), (120, 10)),
                workloads=_spike_workloads(),
            ),
        ],
        phases=PhaseTable(
            boundaries=[
                PhaseBoundary(name="normal", upper_bound_seconds=60),
                PhaseBoundary(name="spike", upper_bound_seconds=240),
            ],
            open_phase="recovery",
        ),
        thresholds={
            "http_req_duration": ["p(95)<3000"],
            "spike_error_rate": ["rate<0.15"],
            "spike_response_time": ["p(90)<2000"],
        },
        setup_settle_seconds=5,
        capture_baseline_report=True,
        report_hit_rate_target=0.7,
    )


# ============================================================================
# stress
# ============================================================================


def _stress_mix() -> Workload:
    users = KeySpace(prefix="user", size=10000)
    products = KeySpace(prefix="product", size=5000)
    bindings = [
        MetricBinding(metric="error_rate", kind=MetricKind.RATE, source=MetricSource.FAILED),
        MetricBinding(
            metric="successful_requests",
            kind=MetricKind.COUNTER,
            source=MetricSource.SUCCEEDED,
        ),
    ]
    return Workload(
        patterns=[
            _get(
                "mass_user", USER_PATH, users, weight=0.6,
                tags={"test_type": "mass_user"},
                max_latency_ms=5000, timeout_seconds=10, metrics=bindings,
            ),
            _get(
                "mass_product", PRODUCT_PATH, products, weight=0.3,
                tags={"test_type": "mass_product"},
                max_latency_ms=5000, timeout_seconds=10, metrics=bindings,
            ),
            RequestPattern(
                name="batch_load",
                weight=0.1,
                method=HttpMethod.POST,
                path=BATCH_USERS_PATH,
                key_space=users,
                batch=BatchSpec(min_size=5, max_size=24),
                max_latency_ms=10000,
                timeout_seconds=15,
                tags={"test_type": "batch_load"},
                metrics=bindings,
            ),
        ],
        sleep=SleepPolicy.fixed(0.1),
    )


def stress_plan() -> LoadPlan:
    return LoadPlan(
        name="stress",
        description="Ramp to 2000 concurrent workers over uniformly spread keys",
        scenarios=[
            Scenario(
                name="extreme_load",
                executor=ExecutorKind.RAMPING_WORKERS,
                start_workers=0,
                stages=_stages(
                    (120, 500), (300, 1000), (300, 1500), (180, 2000), (120, 500), (60, 0)
                ),
                workloads={"default": _stress_mix()},
            ),
        ],
        thresholds={
            "http_req_duration": ["p(95)<2000", "p(99)<5000"],
            "http_req_failed": ["rate<0.05"],
            "error_rate": ["rate<0.1"],
        },
        setup_settle_seconds=10,
    )


PROFILES: Dict[str, Callable[[], LoadPlan]] = {
    "performance": performance_plan,
    "spike": spike_plan,
    "stress": stress_plan,
}


def get_profile(name: str) -> LoadPlan:
    """Build a built-in plan by name."""
    key = str(name or "").strip().lower()
    builder = PROFILES.get(key)
    if builder is None:
        raise KeyError(
            f"Unknown profile {name!r}; expected one of: {', '.join(sorted(PROFILES))}"
        )
    return builder()
