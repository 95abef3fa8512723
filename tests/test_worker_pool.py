"""
Tests for WorkerPool scaling and graceful stop.
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest

from cacheload.core.worker_pool import WorkerPool

pytestmark = pytest.mark.asyncio


async def _until_stopped(worker_id: int, stop_signal: asyncio.Event) -> None:
    await stop_signal.wait()


async def test_scale_up_and_down_signals_newest():
    changes: list[int] = []
    pool = WorkerPool(
        worker_factory=_until_stopped,
        max_workers=10,
        on_workers_changed=lambda: changes.append(pool.count),
    )

    await pool.scale_to(4)
    assert pool.count == 4
    assert pool.target == 4
    assert pool.spawned == 4

    await pool.scale_to(1)
    assert pool.running_worker_ids() == [0]
    # Signalled workers stay live until they return.
    assert len(pool.live_worker_ids()) == 4

    await pool.stop_all(timeout_seconds=1.0)
    assert pool.count == 0
    assert pool.peak == 4
    assert changes


async def test_scale_up_counts_finishing_workers_against_cap():
    pool = WorkerPool(worker_factory=_until_stopped, max_workers=3)
    await pool.scale_to(3)
    pool.retire([2])
    # Worker 2 has not exited yet, so no capacity is free.
    await pool.scale_to(3)
    assert pool.spawned == 3
    await pool.stop_all(timeout_seconds=1.0)


async def test_stop_all_never_cancels_in_flight_work():
    finished: list[int] = []

    async def slow_worker(worker_id: int, stop_signal: asyncio.Event) -> None:
        await stop_signal.wait()
        await asyncio.sleep(0.05)
        finished.append(worker_id)

    pool = WorkerPool(worker_factory=slow_worker, max_workers=2)
    await pool.scale_to(2)
    await pool.stop_all(timeout_seconds=2.0)
    assert sorted(finished) == [0, 1]


async def test_stop_all_timeout_leaves_stuck_worker_running(caplog):
    release = asyncio.Event()

    async def stuck_worker(worker_id: int, stop_signal: asyncio.Event) -> None:
        await release.wait()

    pool = WorkerPool(worker_factory=stuck_worker, name="stuck", max_workers=1)
    await pool.spawn_one()
    with caplog.at_level(logging.WARNING):
        await pool.stop_all(timeout_seconds=0.01)
    assert "Timed out waiting for 1 workers" in caplog.text
    assert pool.count == 1

    release.set()
    await asyncio.gather(*pool.get_tasks())
    pool.prune_completed()
    assert pool.count == 0


async def test_prune_logs_worker_exceptions(caplog):
    async def crashing_worker(worker_id: int, stop_signal: asyncio.Event) -> None:
        raise RuntimeError("boom")

    pool = WorkerPool(worker_factory=crashing_worker, name="crash", max_workers=1)
    await pool.spawn_one()
    await asyncio.sleep(0)
    with caplog.at_level(logging.ERROR):
        pool.prune_completed()
    assert "boom" in caplog.text
    assert pool.count == 0
