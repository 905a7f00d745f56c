# tests/conftest.py

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from types import SimpleNamespace

import pytest

from vidqueue.core.state import AppState
from vidqueue.uploads.queue import UploadQueue

from .fakes import MemoryKeyValueStore, ScriptedTransfer, StaticSizeProbe


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the queue.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="vidqueue-test",
        log_level="DEBUG",
        data_dir=tmp_path / "data",
        queue_db_path=tmp_path / "data" / "queue.sqlite3",
        queue_storage_key="test:upload-queue",
        max_concurrent_uploads=2,
        auto_advance=False,
        schedule_paused=True,
        default_category="car",
        fallback_total_bytes=50 * 1024 * 1024,
        checkpoint_step=10,
        media_api_base_url="https://media.test",
        media_api_key=None,
        media_vod_base_url="https://vod.media.test/vod",
        media_timeout_seconds=5.0,
        media_create_retries=3,
        upload_chunk_size=1024 * 1024,
        offline_step_delay=0.0,
    )


@pytest.fixture()
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture()
def transfer() -> ScriptedTransfer:
    return ScriptedTransfer()


@pytest.fixture()
def probe() -> StaticSizeProbe:
    return StaticSizeProbe()


@pytest.fixture()
def make_queue(
    kv: MemoryKeyValueStore, transfer: ScriptedTransfer, probe: StaticSizeProbe
) -> Callable[..., UploadQueue]:
    """Factory: UploadQueue over the shared fakes; keyword args override constructor options."""

    def _make(**overrides) -> UploadQueue:
        opts = {"store": kv, "transfer": transfer, "probe": probe, "storage_key": "test:upload-queue"}
        opts.update(overrides)
        return UploadQueue(**opts)

    return _make


@pytest.fixture()
def state(settings: SimpleNamespace, kv: MemoryKeyValueStore, transfer: ScriptedTransfer) -> AppState:
    """AppState wired with deterministic fakes (no sqlite, no network)."""
    queue = UploadQueue.from_settings(settings, store=kv, transfer=transfer, probe=StaticSizeProbe())
    return AppState(settings=settings, queue=queue, transfer=transfer, kv_store=kv)
