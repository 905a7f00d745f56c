# src/vidqueue/uploads/persistence.py

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Iterable

from ..core.ports import KeyValueStore, resolve
from .models import UploadTask

logger = logging.getLogger(__name__)


class QueuePersistence:
    """
    Stores the whole upload queue as one JSON array under one key.

    Every save rewrites the full list (O(n) in task count). Saves go through
    one asyncio.Lock so a process never interleaves two writes to the key;
    a second process writing the same key is still last-writer-wins.
    """

    def __init__(self, store: KeyValueStore, key: str) -> None:
        self._store = store
        self._key = key
        self._lock = asyncio.Lock()

    @property
    def key(self) -> str:
        return self._key

    @staticmethod
    def dumps(tasks: Iterable[UploadTask]) -> str:
        return json.dumps([t.to_dict() for t in tasks], ensure_ascii=False)

    @staticmethod
    def loads(raw: str | None) -> list[UploadTask]:
        """
        Parse a persisted record.

        Absent or malformed content yields an empty list; individual bad
        entries are skipped.
        """
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Upload queue record is not valid JSON; starting empty.")
            return []
        if not isinstance(data, list):
            logger.warning("Upload queue record is not a list (%s); starting empty.", type(data).__name__)
            return []

        out: list[UploadTask] = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            try:
                out.append(UploadTask.from_dict(entry))
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed upload task entry: %r", entry)
        return out

    async def load(self) -> list[UploadTask]:
        try:
            raw = await resolve(self._store.get(self._key))
        except Exception:
            logger.exception("Failed to read upload queue key=%s; starting empty.", self._key)
            return []
        return self.loads(raw)

    async def save(self, snapshot: Callable[[], list[UploadTask]]) -> bool:
        """
        Serialize and write the queue.

        `snapshot` is called under the lock so the write always carries the
        latest in-memory state, even when several saves were queued.
        Returns False (and logs) when the store rejected the write.
        """
        async with self._lock:
            payload = self.dumps(snapshot())
            try:
                await resolve(self._store.set(self._key, payload))
            except Exception:
                logger.exception("Failed to save upload queue key=%s", self._key)
                return False
            return True

    async def erase(self) -> None:
        async with self._lock:
            try:
                delete = getattr(self._store, "delete", None)
                if delete is not None:
                    await resolve(delete(self._key))
                else:
                    await resolve(self._store.set(self._key, "[]"))
            except Exception:
                logger.exception("Failed to erase upload queue key=%s", self._key)
