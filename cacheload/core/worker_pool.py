"""Virtual worker pool for one scenario.

Each worker is an asyncio task paired with its own stop signal. Shrinking the
pool only sets stop signals: a signalled worker finishes the request it has
in flight and returns on its own. Tasks are never cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Coroutine

logger = logging.getLogger(__name__)

WorkerFactory = Callable[[int, asyncio.Event], Coroutine[Any, Any, None]]


@dataclass(slots=True)
class _WorkerSlot:
    task: asyncio.Task[None]
    stop_signal: asyncio.Event

    @property
    def live(self) -> bool:
        return not self.task.done()

    @property
    def running(self) -> bool:
        """Live and not yet asked to stop."""
        return self.live and not self.stop_signal.is_set()


class WorkerPool:
    """Spawns, retires and drains the virtual workers of one scenario.

    Attributes:
        name: Label used in log lines and task names
        max_workers: Hard cap on live workers, stop-signalled ones included
        peak: Highest number of live workers observed
    """

    def __init__(
        self,
        *,
        worker_factory: WorkerFactory,
        name: str = "pool",
        max_workers: int = 100,
        on_workers_changed: Callable[[], None] | None = None,
    ) -> None:
        """
        Args:
            worker_factory: Coroutine function running one worker.
                           Signature: (worker_id: int, stop_signal: Event) -> Coroutine
            name: Label used in log lines
            max_workers: Hard cap on live workers
            on_workers_changed: Optional callback after every spawn or retirement
        """
        self._worker_factory = worker_factory
        self.name = name
        self.max_workers = max(0, int(max_workers))
        self._on_workers_changed = on_workers_changed

        self._slots: dict[int, _WorkerSlot] = {}
        self._next_worker_id = 0
        self._target = 0
        self.peak = 0

    @property
    def count(self) -> int:
        """Live workers, including stop-signalled ones still finishing."""
        return sum(1 for slot in self._slots.values() if slot.live)

    @property
    def target(self) -> int:
        return self._target

    @property
    def spawned(self) -> int:
        """Workers ever spawned by this pool; also the next worker id."""
        return self._next_worker_id

    def running_worker_ids(self) -> list[int]:
        return [wid for wid, slot in self._slots.items() if slot.running]

    def live_worker_ids(self) -> list[int]:
        return [wid for wid, slot in self._slots.items() if slot.live]

    def prune_completed(self) -> None:
        """Forget finished workers, logging any that raised."""
        for wid in [w for w, slot in self._slots.items() if not slot.live]:
            task = self._slots.pop(wid).task
            if not task.cancelled() and task.exception() is not None:
                logger.error(
                    "[%s] Worker %d exited with error: %s", self.name, wid, task.exception()
                )

    def _changed(self) -> None:
        self.peak = max(self.peak, self.count)
        if self._on_workers_changed is not None:
            self._on_workers_changed()

    async def spawn_one(self) -> int:
        """Start one worker and return its id."""
        wid = self._next_worker_id
        self._next_worker_id += 1
        stop_signal = asyncio.Event()
        task = asyncio.create_task(
            self._worker_factory(wid, stop_signal), name=f"{self.name}-worker-{wid}"
        )
        self._slots[wid] = _WorkerSlot(task=task, stop_signal=stop_signal)
        self._changed()
        return wid

    async def scale_to(self, target: int) -> None:
        """Converge the number of running workers on ``target``.

        Growing counts every live worker against max_workers, so a
        stop-signalled worker keeps its capacity until it has exited.
        Shrinking signals the newest running workers first.
        """
        self.prune_completed()
        target = max(0, min(self.max_workers, int(target)))
        self._target = target

        running = sorted(self.running_worker_ids())
        if len(running) < target:
            headroom = max(0, self.max_workers - self.count)
            spawn_n = min(target - len(running), headroom)
            if spawn_n:
                logger.debug(
                    "[%s] Scale up: running=%d -> target=%d (+%d)",
                    self.name, len(running), target, spawn_n,
                )
            for _ in range(spawn_n):
                await self.spawn_one()
        elif len(running) > target:
            surplus = running[target:]
            logger.debug(
                "[%s] Scale down: running=%d -> target=%d (retiring %d)",
                self.name, len(running), target, len(surplus),
            )
            self.retire(list(reversed(surplus)))

    def retire(self, worker_ids: list[int]) -> None:
        """Stop-signal specific workers; they exit after their current request."""
        for wid in worker_ids:
            slot = self._slots.get(wid)
            if slot is not None:
                slot.stop_signal.set()
        self._changed()

    def signal_all(self) -> None:
        """Stop-signal every worker without waiting for them."""
        self.retire(list(self._slots))

    async def stop_all(self, *, timeout_seconds: float = 2.0) -> None:
        """Signal every worker, then wait up to ``timeout_seconds`` for them to return.

        Workers still running after the timeout are left alone (and stay
        counted as live); in-flight requests are never aborted.
        """
        self.prune_completed()
        self.signal_all()

        tasks = [slot.task for slot in self._slots.values()]
        if not tasks:
            return

        _, pending = await asyncio.wait(tasks, timeout=timeout_seconds)
        if pending:
            logger.warning(
                "[%s] Timed out waiting for %d workers to stop after %.1fs",
                self.name, len(pending), timeout_seconds,
            )
        self.prune_completed()
        self._changed()

    def get_tasks(self) -> list[asyncio.Task[None]]:
        """Live worker tasks."""
        return [slot.task for slot in self._slots.values() if slot.live]
