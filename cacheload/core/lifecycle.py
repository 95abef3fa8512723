"""
Run Lifecycle Hooks

setup() warms the cache service before any scenario starts; a failed warm-up
aborts the run. teardown() fetches the service's own metrics report after
the last worker has drained; it is informational and never fails the run.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from cacheload.config import settings
from cacheload.connectors.cache_api import CacheApiClient
from cacheload.models.plan import LoadPlan
from cacheload.models.report import CacheMetricsReport

logger = logging.getLogger(__name__)


class CacheLoadError(Exception):
    """Base class for run-aborting errors."""


class SetupError(CacheLoadError):
    """Raised when the warm-up call fails; the run is aborted before scenarios."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


async def setup(
    api: CacheApiClient,
    plan: LoadPlan,
    *,
    timeout_seconds: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Warm the cache, wait for it to settle, optionally capture a baseline report.

    Returns:
        Setup data: ``warmup_status`` and ``baseline_report`` (None unless
        requested and available)

    Raises:
        SetupError: warm-up did not answer 200
    """
    timeout = timeout_seconds or settings.SETUP_TIMEOUT_SECONDS
    logger.info("🚀 Warming up cache service at %s", api.base_url)
    try:
        response = await api.warmup(timeout=timeout)
    except httpx.HTTPError as e:
        raise SetupError(f"warm-up request failed: {e!r}") from e

    if response.status_code != 200:
        raise SetupError(
            f"warm-up returned HTTP {response.status_code}", status=response.status_code
        )

    if plan.setup_settle_seconds > 0:
        logger.info("Waiting %.1fs for warm-up to settle", plan.setup_settle_seconds)
        await asyncio.sleep(plan.setup_settle_seconds)
    logger.info("✅ Cache warm-up complete")

    baseline: Optional[Dict[str, Any]] = None
    if plan.capture_baseline_report:
        report = await fetch_report(api)
        baseline = report.to_dict() if report is not None else None

    return {"warmup_status": response.status_code, "baseline_report": baseline}


async def fetch_report(
    api: CacheApiClient, *, timeout_seconds: Optional[float] = None
) -> Optional[CacheMetricsReport]:
    """GET the service metrics report. Any failure is logged and yields None."""
    timeout = timeout_seconds or settings.REPORT_TIMEOUT_SECONDS
    try:
        response = await api.fetch_metrics_report(timeout=timeout)
    except httpx.HTTPError as e:
        logger.warning("Metrics report request failed: %r", e)
        return None

    if response.status_code != 200:
        logger.warning("Metrics report returned HTTP %d", response.status_code)
        return None

    try:
        return CacheMetricsReport.model_validate(response.json())
    except (ValueError, ValidationError) as e:
        logger.warning("Metrics report could not be parsed: %s", e)
        return None


async def teardown(
    api: CacheApiClient,
    plan: LoadPlan,
    *,
    timeout_seconds: Optional[float] = None,
) -> Optional[CacheMetricsReport]:
    """Fetch and log the final cache statistics. Never raises for report problems."""
    logger.info("📊 Collecting final cache metrics")
    report = await fetch_report(api, timeout_seconds=timeout_seconds)
    if report is None:
        return None

    logger.info("   Redis hit rate:   %.2f%%", report.redis_hit_rate * 100)
    logger.info("   Overall hit rate: %.2f%%", report.overall_hit_rate * 100)

    target = plan.report_hit_rate_target
    if target is not None:
        if report.overall_hit_rate > target:
            logger.info("✅ Overall hit rate above %.0f%%", target * 100)
        else:
            logger.warning(
                "⚠️  Overall hit rate %.2f%% did not exceed %.0f%%",
                report.overall_hit_rate * 100,
                target * 100,
            )
    return report
