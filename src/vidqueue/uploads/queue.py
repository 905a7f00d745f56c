# src/vidqueue/uploads/queue.py

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import replace
from types import TracebackType

from ..core.ports import KeyValueStore, SizeProbe, Transfer
from .engine import ExecutionEngine
from .models import OpResult, UploadCategory, UploadStatus, UploadTask
from .persistence import QueuePersistence
from .scheduler import Scheduler
from .subscriptions import (
    CompletedCallback,
    ErrorCallback,
    ProgressCallback,
    SubscriptionRegistry,
)
from .task_store import DEFAULT_TOTAL_BYTES, TaskStore

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "vidqueue:upload-queue"


class UploadQueue:
    """
    Background upload queue: durable, bounded-concurrency, restartable.

    Owned by the application's composition root (see cli/bootstrap.py);
    construct it, `await load()` (or use `async with`), then `resume_all()` once
    at process start.

    pause/resume/cancel/retry never raise for unknown ids or incompatible
    states; they return an OpResult instead.
    """

    def __init__(
        self,
        *,
        store: KeyValueStore,
        transfer: Transfer,
        probe: SizeProbe | None = None,
        storage_key: str = DEFAULT_STORAGE_KEY,
        concurrency_cap: int = 2,
        auto_advance: bool = False,
        schedule_paused: bool = True,
        default_category: UploadCategory = UploadCategory.CAR,
        fallback_total_bytes: int = DEFAULT_TOTAL_BYTES,
        checkpoint_step: int = 10,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._default_category = default_category
        self.subscriptions = SubscriptionRegistry()
        self.tasks = TaskStore(
            QueuePersistence(store, storage_key),
            probe=probe,
            fallback_total_bytes=fallback_total_bytes,
            default_category=default_category,
            checkpoint_step=checkpoint_step,
            clock=clock,
        )
        self.engine = ExecutionEngine(self.tasks, transfer, self.subscriptions, clock=clock)
        self.scheduler = Scheduler(
            self.tasks,
            self.engine,
            concurrency_cap=concurrency_cap,
            auto_advance=auto_advance,
            schedule_paused=schedule_paused,
        )

    @classmethod
    def from_settings(
        cls,
        settings,
        *,
        store: KeyValueStore,
        transfer: Transfer,
        probe: SizeProbe | None = None,
    ) -> UploadQueue:
        return cls(
            store=store,
            transfer=transfer,
            probe=probe,
            storage_key=settings.queue_storage_key,
            concurrency_cap=settings.max_concurrent_uploads,
            auto_advance=settings.auto_advance,
            schedule_paused=settings.schedule_paused,
            default_category=UploadCategory.parse(settings.default_category),
            fallback_total_bytes=settings.fallback_total_bytes,
            checkpoint_step=settings.checkpoint_step,
        )

    # ---- lifecycle ----

    async def load(self) -> int:
        return await self.tasks.load_from_persistence()

    async def aclose(self) -> None:
        await self.scheduler.shutdown()
        await self.tasks.save()

    async def __aenter__(self) -> UploadQueue:
        await self.load()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    @property
    def auto_advance(self) -> bool:
        return self.scheduler.auto_advance

    @auto_advance.setter
    def auto_advance(self, value: bool) -> None:
        self.scheduler.auto_advance = bool(value)

    async def _maybe_advance(self) -> None:
        if self.scheduler.auto_advance:
            await self.scheduler.fill()

    # ---- commands ----

    async def enqueue(
        self,
        source: str,
        listing_id: str | None = None,
        category: UploadCategory | str | None = None,
    ) -> str:
        cat = category if isinstance(category, UploadCategory) else UploadCategory.parse(category, self._default_category)
        task = await self.tasks.create(source, listing_id=listing_id, category=cat)
        await self._maybe_advance()
        return task.id

    async def try_advance(self) -> str | None:
        return await self.scheduler.try_advance()

    async def pause_upload(self, task_id: str) -> OpResult:
        task = self.tasks.get(task_id)
        if task is None:
            return OpResult.NOT_FOUND
        if task.status != UploadStatus.UPLOADING:
            return OpResult.INVALID_STATE

        self.scheduler.release(task_id)
        await self.tasks.mutate(task_id, lambda t: replace(t, status=UploadStatus.PAUSED))
        logger.info("Upload paused: %s", task_id)
        return OpResult.OK

    async def resume_upload(self, task_id: str) -> OpResult:
        """
        paused -> pending. Progress keeps its in-memory value (not rolled back to
        the last persisted checkpoint) and only moves once the restarted transfer
        passes it.
        """
        task = self.tasks.get(task_id)
        if task is None:
            return OpResult.NOT_FOUND
        if task.status != UploadStatus.PAUSED:
            return OpResult.INVALID_STATE

        await self.tasks.mutate(task_id, lambda t: replace(t, status=UploadStatus.PENDING))
        logger.info("Upload resumed: %s", task_id)
        await self._maybe_advance()
        return OpResult.OK

    async def cancel_upload(self, task_id: str) -> OpResult:
        self.subscriptions.unsubscribe(task_id)
        self.scheduler.release(task_id)
        task = await self.tasks.remove(task_id)
        if task is None:
            return OpResult.NOT_FOUND
        logger.info("Upload cancelled: %s", task_id)
        return OpResult.OK

    async def retry_upload(self, task_id: str) -> OpResult:
        """failed -> pending; the next scheduling pass re-sends the whole file."""
        task = self.tasks.get(task_id)
        if task is None:
            return OpResult.NOT_FOUND
        if task.status != UploadStatus.FAILED:
            return OpResult.INVALID_STATE

        await self.tasks.mutate(
            task_id,
            lambda t: replace(t, status=UploadStatus.PENDING, error=None, progress=0, uploaded_bytes=0),
        )
        logger.info("Upload re-queued after failure: %s", task_id)
        await self._maybe_advance()
        return OpResult.OK

    async def clear_completed(self) -> int:
        removed = await self.tasks.remove_where(lambda t: t.status == UploadStatus.COMPLETED)
        for t in removed:
            self.subscriptions.unsubscribe(t.id)
        logger.info("Cleared completed uploads: %d", len(removed))
        return len(removed)

    async def clear_all(self) -> int:
        self.scheduler.release_all()
        self.subscriptions.clear()
        count = await self.tasks.clear()
        logger.info("Cleared ALL uploads: %d", count)
        return count

    async def resume_all(self) -> int:
        """
        Call once at process start. Tasks left `uploading` by a crash/restart
        go back to `pending` (progress kept); `paused` tasks stay paused.
        """
        demoted = await self.tasks.demote(UploadStatus.UPLOADING, UploadStatus.PENDING)
        logger.info("Resuming uploads: %d interrupted", len(demoted))
        await self._maybe_advance()
        return len(demoted)

    async def wait_idle(self) -> None:
        await self.scheduler.wait_idle()

    # ---- subscriptions ----

    def on_progress(self, task_id: str, callback: ProgressCallback) -> None:
        self.subscriptions.on_progress(task_id, callback)

    def on_completed(self, task_id: str, callback: CompletedCallback) -> None:
        self.subscriptions.on_completed(task_id, callback)

    def on_error(self, task_id: str, callback: ErrorCallback) -> None:
        self.subscriptions.on_error(task_id, callback)

    def unsubscribe(self, task_id: str) -> None:
        self.subscriptions.unsubscribe(task_id)

    # ---- queries ----

    def get_task(self, task_id: str) -> UploadTask | None:
        return self.tasks.get(task_id)

    def get_all_tasks(self) -> list[UploadTask]:
        return self.tasks.list()

    def get_active_uploads(self) -> list[UploadTask]:
        return [t for t in self.tasks.list() if t.status == UploadStatus.UPLOADING]

    def get_completed_uploads(self) -> list[UploadTask]:
        return [t for t in self.tasks.list() if t.status == UploadStatus.COMPLETED]

    def get_failed_uploads(self) -> list[UploadTask]:
        return [t for t in self.tasks.list() if t.status == UploadStatus.FAILED]
