"""
Request Executor

Issues exactly one HTTP call for a request pattern, times it from dispatch to
the fully read response, and turns the result into an Outcome. Transport
failures become failed outcomes; they are never raised to the worker.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Optional

import httpx

from cacheload.connectors.cache_api import CacheApiClient
from cacheload.models.outcome import NO_RESPONSE_STATUS, Outcome
from cacheload.models.plan import RequestPattern

logger = logging.getLogger(__name__)


class RequestExecutor:
    def __init__(
        self,
        api: CacheApiClient,
        *,
        default_timeout_seconds: float = 60.0,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.api = api
        self.default_timeout_seconds = float(default_timeout_seconds)
        self._rng = rng or random.Random()

    def timeout_for(self, pattern: RequestPattern) -> float:
        if pattern.timeout_seconds is not None:
            return float(pattern.timeout_seconds)
        return self.default_timeout_seconds

    def build_request(
        self, pattern: RequestPattern, rng: Optional[random.Random] = None
    ) -> tuple[str, Any]:
        """Resolve the path placeholder and JSON body for one call."""
        rng = rng or self._rng
        path = pattern.path
        body: Any = None
        if pattern.key_space is not None and "{key}" in path:
            path = path.replace("{key}", pattern.key_space.pick(rng))
        if pattern.batch is not None and pattern.key_space is not None:
            body = pattern.batch.build(pattern.key_space, rng)
        return path, body

    async def execute(
        self,
        pattern: RequestPattern,
        *,
        tags: Optional[dict[str, str]] = None,
        rng: Optional[random.Random] = None,
    ) -> Outcome:
        path, body = self.build_request(pattern, rng)
        timeout = self.timeout_for(pattern)
        timeout_ms = timeout * 1000.0
        merged_tags = {**pattern.tags, **(tags or {})}

        start = time.perf_counter()
        try:
            # The httpx timeout only bounds each connect/read; wait_for bounds
            # the whole call including a slowly streamed body.
            response = await asyncio.wait_for(
                self.api.request(pattern.method.value, path, json=body, timeout=timeout),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            logger.debug(
                "%s %s timed out after %.1fs: %r", pattern.method.value, path, timeout, exc
            )
            return self._no_response(pattern, timeout_ms, merged_tags, "timeout")
        except httpx.ConnectError as exc:
            logger.debug("%s %s connection failed: %s", pattern.method.value, path, exc)
            return self._no_response(pattern, timeout_ms, merged_tags, "connect_error")
        except httpx.HTTPError as exc:
            logger.debug("%s %s transport error: %s", pattern.method.value, path, exc)
            return self._no_response(pattern, timeout_ms, merged_tags, "transport_error")
        latency_ms = (time.perf_counter() - start) * 1000.0

        status = int(response.status_code)
        error: Optional[str] = None
        if not pattern.accepts(status):
            error = "http_status"
        elif latency_ms >= timeout_ms:
            error = "timeout"
        if error is not None:
            logger.debug(
                "%s %s -> %d in %.1fms (%s)", pattern.method.value, path, status, latency_ms, error
            )

        return Outcome(
            pattern=pattern.name,
            status=status,
            latency_ms=latency_ms,
            success=error is None,
            tags=merged_tags,
            error=error,
        )

    @staticmethod
    def _no_response(
        pattern: RequestPattern, timeout_ms: float, tags: dict[str, str], error: str
    ) -> Outcome:
        return Outcome(
            pattern=pattern.name,
            status=NO_RESPONSE_STATUS,
            latency_ms=timeout_ms,
            success=False,
            tags=tags,
            error=error,
        )
