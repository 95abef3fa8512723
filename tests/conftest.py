"""
Shared fixtures: an in-process fake of the cache service.

The fake is a FastAPI app served through httpx.ASGITransport, so runs go
through the real HTTP client stack without opening sockets.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import httpx
import pytest
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class FakeCacheState:
    """Knobs and call log for the fake cache service."""

    def __init__(self) -> None:
        self.warmup_status = 200
        self.report_status = 200
        self.report_body: dict | None = None
        self.redis_hit_rate = 0.92
        self.overall_hit_rate = 0.85
        self.user_status = 200
        self.user_delay_seconds = 0.0
        self.warmup_calls = 0
        self.report_calls = 0
        self.requests: list[tuple[str, str]] = []
        self.batches: list[list[str]] = []

    def report(self) -> dict:
        if self.report_body is not None:
            return self.report_body
        return {
            "payload": {
                "redisMetrics": {"hitRate": self.redis_hit_rate, "hits": 920, "misses": 80},
                "localMetrics": {"hitRate": 0.5},
                "summary": {"overallHitRate": self.overall_hit_rate},
            }
        }


def build_fake_cache_app(state: FakeCacheState) -> FastAPI:
    app = FastAPI()

    @app.post("/api/cache/warmup")
    async def warmup():
        state.warmup_calls += 1
        return JSONResponse({"warmed": True}, status_code=state.warmup_status)

    @app.post("/api/cache/users/batch")
    async def batch_users(request: Request):
        keys = await request.json()
        state.requests.append(("POST", "/api/cache/users/batch"))
        state.batches.append(list(keys))
        return {"users": [{"id": k} for k in keys]}

    @app.get("/api/cache/users/{key}")
    async def get_user(key: str):
        state.requests.append(("GET", f"/api/cache/users/{key}"))
        if state.user_delay_seconds:
            await asyncio.sleep(state.user_delay_seconds)
        return JSONResponse({"id": key, "name": f"User {key}"}, status_code=state.user_status)

    @app.get("/api/cache/products/{key}")
    async def get_product(key: str):
        state.requests.append(("GET", f"/api/cache/products/{key}"))
        return {"id": key}

    @app.get("/api/cache/hotdata/{key}")
    async def get_hotdata(key: str):
        state.requests.append(("GET", f"/api/cache/hotdata/{key}"))
        return {"key": key}

    @app.get("/api/cache/metrics/report")
    async def metrics_report():
        state.report_calls += 1
        return JSONResponse(state.report(), status_code=state.report_status)

    return app


@pytest.fixture
def fake_cache() -> FakeCacheState:
    return FakeCacheState()


@pytest.fixture
def fake_transport(fake_cache: FakeCacheState) -> httpx.ASGITransport:
    return httpx.ASGITransport(app=build_fake_cache_app(fake_cache))
