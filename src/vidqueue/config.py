# src/vidqueue/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app (normal "settings layer").
- No secrets required at import time (the media API key is optional).
- Bad values fall back to defaults instead of crashing at startup.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

ENV_PREFIX = "VIDQUEUE"

CATEGORIES = ("car", "horse", "real_estate")

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, *, minimum: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if minimum is not None and value < minimum:
        return default
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    queue_db_path: Path
    queue_storage_key: str

    # ---- Queue policy ----
    max_concurrent_uploads: int
    auto_advance: bool
    schedule_paused: bool
    default_category: str
    fallback_total_bytes: int
    checkpoint_step: int

    # ---- Media host ----
    media_api_base_url: str
    media_api_key: Optional[str]
    media_vod_base_url: str
    media_timeout_seconds: float
    media_create_retries: int
    upload_chunk_size: int
    offline_step_delay: float

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "vidqueue") or "vidqueue"
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/vidqueue"))
        queue_db_path = _env_path(_k("QUEUE_DB_PATH"), data_dir / "queue.sqlite3")
        queue_storage_key = _env(_k("QUEUE_STORAGE_KEY"), "vidqueue:upload-queue")

        max_concurrent_uploads = _env_int(_k("MAX_CONCURRENT_UPLOADS"), 2, minimum=1)
        # Off by default: an unreachable media host would otherwise be hammered
        # by every enqueue/completion.
        auto_advance = _env_bool(_k("AUTO_ADVANCE"), False)
        schedule_paused = _env_bool(_k("SCHEDULE_PAUSED"), True)

        default_category = _env(_k("DEFAULT_CATEGORY"), "car").strip().lower()
        if default_category not in CATEGORIES:
            default_category = "car"

        fallback_total_bytes = _env_int(_k("FALLBACK_TOTAL_BYTES"), 50 * 1024 * 1024, minimum=0)
        checkpoint_step = _env_int(_k("CHECKPOINT_STEP"), 10, minimum=1)

        media_api_base_url = _env(_k("MEDIA_API_BASE_URL"), "https://ws.api.video").rstrip("/")
        media_api_key = _first_env(_k("MEDIA_API_KEY"), "APIVIDEO_API_KEY", default=None)
        media_vod_base_url = _env(_k("MEDIA_VOD_BASE_URL"), "https://vod.api.video/vod").rstrip("/")
        media_timeout_seconds = max(1.0, _env_float(_k("MEDIA_TIMEOUT_SECONDS"), 15.0))
        media_create_retries = _env_int(_k("MEDIA_CREATE_RETRIES"), 3, minimum=1)
        upload_chunk_size = _env_int(_k("UPLOAD_CHUNK_SIZE"), 1024 * 1024, minimum=1024)
        offline_step_delay = max(0.0, _env_float(_k("OFFLINE_STEP_DELAY"), 0.2))

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            queue_db_path=queue_db_path,
            queue_storage_key=queue_storage_key,
            max_concurrent_uploads=max_concurrent_uploads,
            auto_advance=auto_advance,
            schedule_paused=schedule_paused,
            default_category=default_category,
            fallback_total_bytes=fallback_total_bytes,
            checkpoint_step=checkpoint_step,
            media_api_base_url=media_api_base_url,
            media_api_key=media_api_key,
            media_vod_base_url=media_vod_base_url,
            media_timeout_seconds=media_timeout_seconds,
            media_create_retries=media_create_retries,
            upload_chunk_size=upload_chunk_size,
            offline_step_delay=offline_step_delay,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
