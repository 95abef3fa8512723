"""
Tests for RequestExecutor outcome mapping using httpx.MockTransport.
"""

import asyncio
import json
import random
import sys
import time
from pathlib import Path
from types import SimpleNamespace

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import httpx
import pytest

from cacheload.connectors.cache_api import CacheApiClient
from cacheload.core import request_executor
from cacheload.core.request_executor import RequestExecutor
from cacheload.models import BatchSpec, HttpMethod, KeySpace, RequestPattern

pytestmark = pytest.mark.asyncio

USER = RequestPattern(
    name="user",
    path="/api/cache/users/{key}",
    key_space=KeySpace(prefix="user", size=10),
    tags={"api": "user"},
    timeout_seconds=2,
)


def _client(handler) -> CacheApiClient:
    return CacheApiClient("http://cache.test/", transport=httpx.MockTransport(handler))


async def test_success_outcome_and_key_substitution():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    async with _client(handler) as api:
        outcome = await RequestExecutor(api).execute(
            USER, tags={"phase": "normal"}, rng=random.Random(1)
        )

    assert outcome.success
    assert outcome.status == 200
    assert outcome.error is None
    assert outcome.latency_ms >= 0
    assert outcome.tags == {"api": "user", "phase": "normal"}
    assert seen[0].url.host == "cache.test"
    assert seen[0].url.path.startswith("/api/cache/users/user")


async def test_unaccepted_status_is_failure():
    async with _client(lambda r: httpx.Response(503)) as api:
        outcome = await RequestExecutor(api).execute(USER)
    assert not outcome.success
    assert outcome.status == 503
    assert outcome.error == "http_status"


async def test_accept_range_is_inclusive():
    pattern = USER.model_copy(update={"accept_status_max": 499})
    async with _client(lambda r: httpx.Response(404)) as api:
        outcome = await RequestExecutor(api).execute(pattern)
    assert outcome.success


async def test_timeout_becomes_failed_outcome():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    async with _client(handler) as api:
        outcome = await RequestExecutor(api).execute(USER)

    assert not outcome.success
    assert outcome.status == 0
    assert not outcome.responded
    assert outcome.latency_ms == 2000.0
    assert outcome.error == "timeout"


async def test_connection_error_uses_default_timeout():
    pattern = USER.model_copy(update={"timeout_seconds": None})

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with _client(handler) as api:
        outcome = await RequestExecutor(api, default_timeout_seconds=7).execute(pattern)

    assert outcome.status == 0
    assert outcome.latency_ms == 7000.0
    assert outcome.error == "connect_error"


async def test_other_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.RemoteProtocolError("bad framing", request=request)

    async with _client(handler) as api:
        outcome = await RequestExecutor(api).execute(USER)
    assert outcome.error == "transport_error"


async def test_batch_body_is_json_array_of_keys():
    bodies: list = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=[])

    pattern = RequestPattern(
        name="batch",
        method=HttpMethod.POST,
        path="/api/cache/users/batch",
        key_space=KeySpace(prefix="user", size=1000),
        batch=BatchSpec(min_size=5, max_size=5, sequential=True),
    )
    async with _client(handler) as api:
        outcome = await RequestExecutor(api).execute(pattern)

    assert outcome.success
    assert bodies == [["user1", "user2", "user3", "user4", "user5"]]


async def test_client_requires_initialize():
    api = _client(lambda r: httpx.Response(200))
    with pytest.raises(RuntimeError, match="initialize"):
        await api.request("GET", "/")


async def test_slow_body_is_cut_off_at_timeout():
    async def trickle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        await reader.readuntil(b"\r\n\r\n")
        writer.write(
            b"HTTP/1.1 200 OK\r\nContent-Type: text/plain\r\nContent-Length: 20\r\n\r\n"
        )
        try:
            for _ in range(20):
                writer.write(b"x")
                await writer.drain()
                await asyncio.sleep(0.05)
        except ConnectionError:
            pass
        finally:
            writer.close()

    server = await asyncio.start_server(trickle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    pattern = USER.model_copy(update={"timeout_seconds": 0.2})
    try:
        # Explicit transport keeps environment proxies out of the way.
        async with CacheApiClient(
            f"http://127.0.0.1:{port}", transport=httpx.AsyncHTTPTransport()
        ) as api:
            started = time.perf_counter()
            outcome = await RequestExecutor(api).execute(pattern)
            elapsed = time.perf_counter() - started
    finally:
        server.close()
        await server.wait_closed()

    assert elapsed < 0.6
    assert not outcome.success
    assert outcome.status == 0
    assert outcome.latency_ms == 200.0
    assert outcome.error == "timeout"


async def test_response_at_timeout_bound_is_reported_as_timeout(monkeypatch):
    ticks = iter([0.0, 2.5])
    monkeypatch.setattr(
        request_executor, "time", SimpleNamespace(perf_counter=lambda: next(ticks))
    )
    async with _client(lambda r: httpx.Response(200)) as api:
        outcome = await RequestExecutor(api).execute(USER)
    assert outcome.status == 200
    assert not outcome.success
    assert outcome.error == "timeout"
