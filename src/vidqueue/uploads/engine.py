# src/vidqueue/uploads/engine.py

from __future__ import annotations

"""
Execution engine.

Drives one task through:
- pending|paused -> uploading (start)
- uploading -> completed | failed (execute)

Pausing and cancelling happen outside the engine (UploadQueue). They do not
abort the transfer call; they invalidate the run, and every late progress
event or result of an invalidated run is dropped here.

A resumed task is a restarted task: the transfer re-sends the whole payload.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import replace

from ..core.ports import Transfer, TransferResult
from .models import UploadStatus, UploadTask, bytes_for
from .subscriptions import SubscriptionRegistry
from .task_store import TaskStore

logger = logging.getLogger(__name__)

STARTABLE = (UploadStatus.PENDING, UploadStatus.PAUSED)

# The last point is reserved for the resolved transfer: progress 100 means completed.
MAX_RUNNING_PROGRESS = 99


def _error_message(exc: BaseException) -> str:
    msg = str(exc).strip()
    return msg or exc.__class__.__name__


class ExecutionEngine:
    def __init__(
        self,
        store: TaskStore,
        transfer: Transfer,
        subscriptions: SubscriptionRegistry,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._transfer = transfer
        self._subs = subscriptions
        self._clock = clock

    async def start(self, task_id: str) -> UploadTask | None:
        """Mark the task uploading. Returns None if it is gone or not startable."""
        now = self._clock()

        def fn(t: UploadTask) -> UploadTask:
            if t.status not in STARTABLE:
                return t
            return replace(t, status=UploadStatus.UPLOADING, started_at=t.started_at or now, error=None)

        task = await self._store.mutate(task_id, fn)
        if task is None or task.status != UploadStatus.UPLOADING:
            return None
        return task

    def _on_progress(self, task_id: str, is_current: Callable[[], bool]) -> Callable[[int], None]:
        """
        Stored progress is clamped to 0..99 and never decreases; listeners get
        the reported percent (clamped to 0..100) on every call of the current run.
        """

        def on_progress(percent: int) -> None:
            if not is_current():
                return
            try:
                reported = max(0, min(100, int(percent)))
            except (TypeError, ValueError):
                logger.debug("Ignoring non-numeric progress %r task_id=%s", percent, task_id)
                return
            value = min(MAX_RUNNING_PROGRESS, reported)

            def fn(t: UploadTask) -> UploadTask:
                if t.status != UploadStatus.UPLOADING or value <= t.progress:
                    return t
                return replace(t, progress=value, uploaded_bytes=bytes_for(t.total_bytes, value))

            task = self._store.mutate_nowait(task_id, fn)
            if task is None or task.status != UploadStatus.UPLOADING:
                return
            self._subs.emit_progress(reported, task)

        return on_progress

    async def execute(self, task_id: str, is_current: Callable[[], bool]) -> UploadTask | None:
        """
        Run the transfer for an already-started task and record the outcome.

        Collaborator errors never escape: they become a failed task plus an
        error callback. Returns the terminal snapshot, or None when the run
        was invalidated or the task disappeared.
        """
        task = self._store.get(task_id)
        if task is None or not is_current():
            return None

        logger.info("Starting upload id=%s size=%.2f MB", task.id, task.total_bytes / 1024 / 1024)

        try:
            result = await self._transfer.transfer(
                task.source,
                task.category.value,
                self._on_progress(task_id, is_current),
                {"title": f"Upload {task.id}"},
            )
            if not isinstance(result, TransferResult) or not result.remote_id:
                raise ValueError("transfer returned no remote id")
        except Exception as exc:
            message = _error_message(exc)
            if not is_current():
                logger.debug("Dropping failure of stale run task_id=%s: %s", task_id, message)
                return None
            return await self._fail(task_id, message)

        if not is_current():
            logger.debug("Dropping result of stale run task_id=%s remote_id=%s", task_id, result.remote_id)
            return None
        return await self._complete(task_id, result)

    async def _complete(self, task_id: str, result: TransferResult) -> UploadTask | None:
        now = self._clock()

        def fn(t: UploadTask) -> UploadTask:
            return replace(
                t,
                status=UploadStatus.COMPLETED,
                progress=100,
                uploaded_bytes=t.total_bytes,
                remote_id=result.remote_id,
                remote_url=result.remote_url,
                thumbnail_url=result.thumbnail_url,
                error=None,
                completed_at=t.completed_at or now,
            )

        task = await self._store.mutate(task_id, fn)
        if task is None:
            return None
        logger.info("Upload completed id=%s remote_id=%s url=%s", task.id, task.remote_id, task.remote_url)
        self._subs.emit_completed(task)
        return task

    async def _fail(self, task_id: str, message: str) -> UploadTask | None:
        def fn(t: UploadTask) -> UploadTask:
            return replace(t, status=UploadStatus.FAILED, error=message)

        task = await self._store.mutate(task_id, fn)
        if task is None:
            return None
        logger.warning("Upload failed id=%s: %s", task.id, message)
        self._subs.emit_error(message, task)
        return task
