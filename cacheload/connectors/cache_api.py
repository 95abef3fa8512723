"""
Cache Service HTTP Client

Manages the shared async HTTP client used to drive the cache service under
test, plus helpers for the lifecycle endpoints (warm-up and metrics report).
"""

import logging
from typing import Any, Optional

import httpx

from cacheload.config import settings

logger = logging.getLogger(__name__)

# Endpoints exposed by the cache service.
WARMUP_PATH = "/api/cache/warmup"
USER_PATH = "/api/cache/users/{key}"
PRODUCT_PATH = "/api/cache/products/{key}"
HOTDATA_PATH = "/api/cache/hotdata/{key}"
BATCH_USERS_PATH = "/api/cache/users/batch"
METRICS_REPORT_PATH = "/api/cache/metrics/report"


class CacheApiClient:
    """
    Async HTTP client for the cache service with pooled connections.
    """

    def __init__(
        self,
        base_url: str,
        max_connections: int = 2000,
        max_keepalive_connections: int = 500,
        default_timeout: float = 60.0,
        client_name: str = "cache-api",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the cache service client.

        Args:
            base_url: Cache service base URL, e.g. http://localhost:8080
            max_connections: Maximum concurrent connections
            max_keepalive_connections: Idle connections kept open
            default_timeout: Timeout (seconds) when a call does not pass one
            client_name: Descriptive name for logging
            transport: Optional transport override (tests, in-process apps)
        """
        self.base_url = str(base_url).rstrip("/")
        self.max_connections = max_connections
        self.max_keepalive_connections = max_keepalive_connections
        self.default_timeout = default_timeout
        self.client_name = client_name
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None

        logger.info(
            f"[{client_name}] Cache client configured: {self.base_url}, "
            f"max_connections={max_connections}, timeout={default_timeout}s"
        )

    @classmethod
    def from_settings(
        cls,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "CacheApiClient":
        return cls(
            base_url=base_url or settings.CACHE_BASE_URL,
            max_connections=settings.HTTP_MAX_CONNECTIONS,
            max_keepalive_connections=settings.HTTP_MAX_KEEPALIVE_CONNECTIONS,
            default_timeout=settings.HTTP_DEFAULT_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def initialize(self):
        """Create the underlying HTTP client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            limits=httpx.Limits(
                max_connections=self.max_connections,
                max_keepalive_connections=self.max_keepalive_connections,
            ),
            timeout=httpx.Timeout(self.default_timeout),
            transport=self._transport,
        )
        logger.debug(f"[{self.client_name}] HTTP client ready")

    async def close(self):
        """Close all pooled connections."""
        if self._client is None:
            return
        await self._client.aclose()
        self._client = None
        logger.debug(f"[{self.client_name}] HTTP client closed")

    async def __aenter__(self) -> "CacheApiClient":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(f"[{self.client_name}] client used before initialize()")
        return self._client

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """
        Issue one request and read the full body.

        Transport errors (httpx.TimeoutException, httpx.TransportError) propagate
        to the caller.
        """
        return await self.client.request(
            method,
            path,
            json=json,
            timeout=timeout if timeout is not None else self.default_timeout,
        )

    async def warmup(self, timeout: Optional[float] = None) -> httpx.Response:
        """POST the cache warm-up endpoint."""
        return await self.request("POST", WARMUP_PATH, timeout=timeout)

    async def fetch_metrics_report(
        self, timeout: Optional[float] = None
    ) -> httpx.Response:
        """GET the cache metrics report."""
        return await self.request("GET", METRICS_REPORT_PATH, timeout=timeout)
