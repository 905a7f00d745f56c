# src/vidqueue/uploads/task_store.py

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import replace

from ..core.ports import SizeProbe, resolve
from .models import UploadCategory, UploadStatus, UploadTask
from .persistence import QueuePersistence

logger = logging.getLogger(__name__)

DEFAULT_TOTAL_BYTES = 50 * 1024 * 1024

TaskTransform = Callable[[UploadTask], UploadTask]


def _mib(n: int) -> str:
    return f"{n / 1024 / 1024:.2f} MB"


class TaskStore:
    """
    In-memory authoritative map of task id -> UploadTask.

    Tasks are frozen snapshots; `mutate` is the only write path and swaps the
    stored snapshot for the transformed one. Persistence happens:
    - on every status change,
    - when progress enters a new checkpoint bucket (every `checkpoint_step` points),
    - on create/remove/clear.

    All methods run on one event loop; in-memory bookkeeping never awaits
    between reading and writing the map.
    """

    def __init__(
        self,
        persistence: QueuePersistence,
        *,
        probe: SizeProbe | None = None,
        fallback_total_bytes: int = DEFAULT_TOTAL_BYTES,
        default_category: UploadCategory = UploadCategory.CAR,
        checkpoint_step: int = 10,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._persistence = persistence
        self._probe = probe
        self._fallback_total_bytes = max(0, int(fallback_total_bytes))
        self._default_category = default_category
        self._checkpoint_step = max(1, int(checkpoint_step))
        self._clock = clock
        self._tasks: dict[str, UploadTask] = {}
        self._pending_saves: set[asyncio.Future[bool]] = set()

    # ---- low-level helpers ----

    def _new_id(self) -> str:
        while True:
            task_id = f"upload-{int(self._clock() * 1000)}-{secrets.token_hex(4)}"
            if task_id not in self._tasks:
                return task_id

    async def _probe_size(self, source: str) -> int:
        if self._probe is None:
            return self._fallback_total_bytes
        try:
            size = await resolve(self._probe.stat_size(source))
        except Exception:
            logger.warning("Failed to get file size for %s; assuming %s", source, _mib(self._fallback_total_bytes),
                           exc_info=True)
            return self._fallback_total_bytes
        if size is None or isinstance(size, bool) or not isinstance(size, int) or size < 0:
            logger.warning("File size unavailable for %s; assuming %s", source, _mib(self._fallback_total_bytes))
            return self._fallback_total_bytes
        return size

    def _checkpoint(self, progress: int) -> int:
        return progress // self._checkpoint_step

    def _needs_save(self, before: UploadTask, after: UploadTask) -> bool:
        if before.status != after.status:
            return True
        return self._checkpoint(after.progress) != self._checkpoint(before.progress)

    # ---- public API ----

    async def create(
        self,
        source: str,
        *,
        listing_id: str | None = None,
        category: UploadCategory | None = None,
    ) -> UploadTask:
        if not source or not source.strip():
            raise ValueError("source is required")

        total_bytes = await self._probe_size(source)
        task = UploadTask(
            id=self._new_id(),
            source=source,
            category=category or self._default_category,
            status=UploadStatus.PENDING,
            created_at=self._clock(),
            listing_id=listing_id,
            total_bytes=total_bytes,
        )
        self._tasks[task.id] = task
        await self.save()

        logger.info("Task queued id=%s size=%s category=%s", task.id, _mib(total_bytes), task.category.value)
        return task

    def get(self, task_id: str) -> UploadTask | None:
        return self._tasks.get(task_id)

    def list(self) -> list[UploadTask]:
        return list(self._tasks.values())

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def _apply(self, task_id: str, fn: TaskTransform) -> tuple[UploadTask, UploadTask] | None:
        before = self._tasks.get(task_id)
        if before is None:
            return None
        after = fn(before)
        if after.id != before.id:
            raise ValueError("task id is immutable")
        if after != before:
            self._tasks[task_id] = after
        return before, after

    async def mutate(self, task_id: str, fn: TaskTransform) -> UploadTask | None:
        """
        Apply `fn` to the stored snapshot. Returns the new snapshot, or None if
        the task does not exist (e.g. it was cancelled while a transfer ran).
        """
        applied = self._apply(task_id, fn)
        if applied is None:
            return None
        before, after = applied
        if self._needs_save(before, after):
            await self.save()
        return after

    def mutate_nowait(self, task_id: str, fn: TaskTransform) -> UploadTask | None:
        """
        Same as `mutate`, for synchronous callers (transfer progress hooks).
        A needed save is scheduled on the running loop; `flush()` awaits it.
        """
        applied = self._apply(task_id, fn)
        if applied is None:
            return None
        before, after = applied
        if self._needs_save(before, after):
            fut = asyncio.ensure_future(self.save())
            self._pending_saves.add(fut)
            fut.add_done_callback(self._pending_saves.discard)
        return after

    async def flush(self) -> None:
        while self._pending_saves:
            await asyncio.gather(*list(self._pending_saves), return_exceptions=True)

    async def remove(self, task_id: str) -> UploadTask | None:
        task = self._tasks.pop(task_id, None)
        if task is not None:
            await self.save()
        return task

    async def remove_where(self, predicate: Callable[[UploadTask], bool]) -> list[UploadTask]:
        removed = [t for t in self._tasks.values() if predicate(t)]
        for t in removed:
            del self._tasks[t.id]
        if removed:
            await self.save()
        return removed

    async def clear(self) -> int:
        """Drop every task and erase the persisted record."""
        count = len(self._tasks)
        self._tasks.clear()
        await self._persistence.erase()
        return count

    async def demote(self, status: UploadStatus, to: UploadStatus) -> list[UploadTask]:
        """Move every task in `status` to `to` in one pass with a single save."""
        changed: list[UploadTask] = []
        for task_id, task in list(self._tasks.items()):
            if task.status == status:
                self._tasks[task_id] = replace(task, status=to)
                changed.append(self._tasks[task_id])
        await self.save()
        return changed

    async def load_from_persistence(self) -> int:
        tasks = await self._persistence.load()
        self._tasks = {t.id: t for t in tasks}
        logger.info("Upload queue loaded: %d tasks", len(self._tasks))
        return len(self._tasks)

    async def save(self) -> bool:
        return await self._persistence.save(self.list)
