# src/vidqueue/transfer/offline.py

from __future__ import annotations

import asyncio
import hashlib
from typing import Any

from ..core.ports import ProgressFn, TransferError, TransferResult
from ..storage.probe import local_path


class OfflineTransfer:
    """
    Offline deterministic transfer used for demos when no media host is configured.

    Behavior:
    - missing file -> fails like the real transfer
    - otherwise reports progress in 10-point steps and "uploads" to a file:// URL
    - remote id is derived from the path, so re-uploading the same file gives the same id
    """

    def __init__(self, *, step_delay: float = 0.2) -> None:
        self._step_delay = max(0.0, float(step_delay))

    async def transfer(
        self,
        source: str,
        category: str,
        on_progress: ProgressFn,
        options: dict[str, Any] | None = None,
    ) -> TransferResult:
        path = local_path(source)
        if not path.is_file():
            raise TransferError(f"Video file not found: {source}")

        for pct in range(0, 101, 10):
            on_progress(pct)
            await asyncio.sleep(self._step_delay)

        digest = hashlib.sha1(str(path.resolve()).encode("utf-8")).hexdigest()[:12]
        return TransferResult(remote_id=f"offline-{digest}", remote_url=path.resolve().as_uri())
