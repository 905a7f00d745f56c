# src/vidqueue/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete collaborators (durable store, file probe, media host transfer)
  into one UploadQueue owned by AppState.
"""

from __future__ import annotations

import contextlib
import logging

from ..config import get_settings
from ..core.ports import Transfer
from ..core.state import AppState
from ..storage.probe import FileSizeProbe
from ..storage.sqlite_kv import SQLiteKeyValueStore
from ..transfer.http_transfer import HttpTransfer
from ..transfer.offline import OfflineTransfer
from ..uploads.queue import UploadQueue

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.queue_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    transfer: Transfer
    offline = False
    try:
        transfer = HttpTransfer.from_settings(settings)
    except RuntimeError:
        # Fallback for demos / local runs without a media host.
        logger.warning("Media API key is not set; using offline demo transfer.")
        transfer = OfflineTransfer(step_delay=settings.offline_step_delay)
        offline = True

    kv_store = SQLiteKeyValueStore(settings.queue_db_path)
    queue = UploadQueue.from_settings(settings, store=kv_store, transfer=transfer, probe=FileSizeProbe())

    return AppState(
        settings=settings,
        queue=queue,
        transfer=transfer,
        kv_store=kv_store,
        offline=offline,
    )


async def start_queue(state: AppState) -> int:
    """Load the persisted queue and recover uploads interrupted by the last shutdown."""
    await state.queue.load()
    return await state.queue.resume_all()


async def shutdown(state: AppState) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    try:
        await state.queue.aclose()
    except Exception:
        logger.exception("Failed to close upload queue.")

    aclose = getattr(state.transfer, "aclose", None)
    if aclose is not None:
        try:
            await aclose()
        except Exception:
            logger.debug("Transfer close failed.", exc_info=True)

    with contextlib.suppress(Exception):
        state.kv_store.close()  # type: ignore[attr-defined]
