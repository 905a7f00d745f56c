# src/vidqueue/uploads/subscriptions.py

from __future__ import annotations

import logging
from collections.abc import Callable

from .models import UploadTask

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, UploadTask], None]
CompletedCallback = Callable[[UploadTask], None]
ErrorCallback = Callable[[str, UploadTask], None]


class SubscriptionRegistry:
    """
    One callback slot per event type per task id.

    Registering again replaces the previous callback. Nothing is removed on
    completion or failure; callers unsubscribe when they stop listening.
    A callback that raises is logged and otherwise ignored.
    """

    def __init__(self) -> None:
        self._progress: dict[str, ProgressCallback] = {}
        self._completed: dict[str, CompletedCallback] = {}
        self._error: dict[str, ErrorCallback] = {}

    def on_progress(self, task_id: str, callback: ProgressCallback) -> None:
        self._progress[task_id] = callback

    def on_completed(self, task_id: str, callback: CompletedCallback) -> None:
        self._completed[task_id] = callback

    def on_error(self, task_id: str, callback: ErrorCallback) -> None:
        self._error[task_id] = callback

    def unsubscribe(self, task_id: str) -> None:
        self._progress.pop(task_id, None)
        self._completed.pop(task_id, None)
        self._error.pop(task_id, None)

    def clear(self) -> None:
        self._progress.clear()
        self._completed.clear()
        self._error.clear()

    def has_subscribers(self, task_id: str) -> bool:
        return task_id in self._progress or task_id in self._completed or task_id in self._error

    def emit_progress(self, percent: int, task: UploadTask) -> None:
        cb = self._progress.get(task.id)
        if cb is None:
            return
        try:
            cb(percent, task)
        except Exception:
            logger.exception("Progress callback failed task_id=%s", task.id)

    def emit_completed(self, task: UploadTask) -> None:
        cb = self._completed.get(task.id)
        if cb is None:
            return
        try:
            cb(task)
        except Exception:
            logger.exception("Completion callback failed task_id=%s", task.id)

    def emit_error(self, message: str, task: UploadTask) -> None:
        cb = self._error.get(task.id)
        if cb is None:
            return
        try:
            cb(message, task)
        except Exception:
            logger.exception("Error callback failed task_id=%s", task.id)
