# src/vidqueue/uploads/scheduler.py

from __future__ import annotations

"""
Upload scheduler.

Picks the oldest eligible task (FIFO by created_at, no priorities) when the
active set has room, starts it, and runs its transfer as an asyncio task.

Scheduling is pull-based by default: nothing calls try_advance() on its own.
With auto_advance=True every finished run pulls the next task (fill()).
"""

import asyncio
import itertools
import logging

from .engine import ExecutionEngine
from .models import UploadStatus, UploadTask
from .task_store import TaskStore

logger = logging.getLogger(__name__)


class Scheduler:
    def __init__(
        self,
        store: TaskStore,
        engine: ExecutionEngine,
        *,
        concurrency_cap: int = 2,
        auto_advance: bool = False,
        schedule_paused: bool = True,
    ) -> None:
        if concurrency_cap < 1:
            raise ValueError("concurrency_cap must be >= 1")
        self._store = store
        self._engine = engine
        self._cap = int(concurrency_cap)
        self.auto_advance = bool(auto_advance)
        self._eligible_statuses = (
            (UploadStatus.PENDING, UploadStatus.PAUSED) if schedule_paused else (UploadStatus.PENDING,)
        )

        # task_id -> run generation; membership is the active set.
        self._active: dict[str, int] = {}
        self._generation = itertools.count(1)
        self._runs: set[asyncio.Task[None]] = set()
        self._closing = False

    @property
    def concurrency_cap(self) -> int:
        return self._cap

    @property
    def active_set(self) -> frozenset[str]:
        return frozenset(self._active)

    def is_active(self, task_id: str) -> bool:
        return task_id in self._active

    def occupied(self) -> int:
        """
        Slots in use: the active set plus `uploading` rows with no run here
        (loaded from a previous process, not yet demoted by resume_all()).
        """
        orphaned = sum(
            1 for t in self._store.list()
            if t.status == UploadStatus.UPLOADING and t.id not in self._active
        )
        return len(self._active) + orphaned

    def has_capacity(self) -> bool:
        return self.occupied() < self._cap

    def eligible(self) -> list[UploadTask]:
        candidates = [
            t for t in self._store.list()
            if t.status in self._eligible_statuses and t.id not in self._active
        ]
        # sort() is stable: equal timestamps keep insertion order.
        candidates.sort(key=lambda t: t.created_at)
        return candidates

    async def try_advance(self) -> str | None:
        """Start the head of the queue if a slot is free. Returns the started id."""
        if self._closing:
            return None
        if not self.has_capacity():
            logger.debug("Max concurrent uploads reached (%d), waiting", self._cap)
            return None

        candidates = self.eligible()
        if not candidates:
            logger.debug("No pending uploads")
            return None

        task_id = candidates[0].id
        token = next(self._generation)
        # Claim the slot before awaiting so a concurrent pass cannot pick the same task.
        self._active[task_id] = token

        started = await self._engine.start(task_id)
        if started is None:
            if self._active.get(task_id) == token:
                del self._active[task_id]
            return None
        if self._active.get(task_id) != token:
            # Paused/cancelled while the start was being persisted.
            return None

        run = asyncio.create_task(self._run(task_id, token), name=f"upload:{task_id}")
        self._runs.add(run)
        run.add_done_callback(self._runs.discard)
        return task_id

    async def fill(self) -> list[str]:
        """Call try_advance() until no slot or no eligible task is left."""
        started: list[str] = []
        while True:
            task_id = await self.try_advance()
            if task_id is None:
                return started
            started.append(task_id)

    def release(self, task_id: str) -> bool:
        """Drop a task from the active set; its in-flight run (if any) becomes stale."""
        return self._active.pop(task_id, None) is not None

    def release_all(self) -> None:
        self._active.clear()

    async def _run(self, task_id: str, token: int) -> None:
        def is_current() -> bool:
            return self._active.get(task_id) == token

        try:
            await self._engine.execute(task_id, is_current)
        except Exception:
            logger.exception("Upload run crashed task_id=%s", task_id)
        finally:
            if is_current():
                del self._active[task_id]

        if self.auto_advance and not self._closing:
            await self.fill()

    async def wait_idle(self) -> None:
        """Wait for every in-flight run, including runs started by auto-advance."""
        while self._runs:
            await asyncio.gather(*list(self._runs), return_exceptions=True)
        await self._store.flush()

    async def shutdown(self) -> None:
        """Cancel in-flight runs. Their tasks stay `uploading` until resume_all()."""
        self._closing = True
        runs = list(self._runs)
        for run in runs:
            run.cancel()
        if runs:
            await asyncio.gather(*runs, return_exceptions=True)
        await self._store.flush()
