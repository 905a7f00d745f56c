# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets. Put the media API key in .env (local, gitignored).

This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "VIDQUEUE_APP_NAME": "App display name (default: vidqueue).",
    "VIDQUEUE_LOG_LEVEL": "Console logging level (default: INFO).",
    # Paths (gitignored)
    "VIDQUEUE_DATA_DIR": "Local data directory, also holds vidqueue.log (default: .local/vidqueue).",
    "VIDQUEUE_QUEUE_DB_PATH": "SQLite key-value store path (default: <data_dir>/queue.sqlite3).",
    "VIDQUEUE_QUEUE_STORAGE_KEY": "Key holding the persisted queue (default: vidqueue:upload-queue).",
    # Queue policy
    "VIDQUEUE_MAX_CONCURRENT_UPLOADS": "Upload slots (default: 2, minimum 1).",
    "VIDQUEUE_AUTO_ADVANCE": "Start queued uploads automatically (true/false, default: false).",
    "VIDQUEUE_SCHEDULE_PAUSED": "Let the scheduler pick paused uploads too (true/false, default: true).",
    "VIDQUEUE_DEFAULT_CATEGORY": "car | horse | real_estate (default: car).",
    "VIDQUEUE_FALLBACK_TOTAL_BYTES": "Size assumed when a file cannot be inspected (default: 52428800).",
    "VIDQUEUE_CHECKPOINT_STEP": "Persist progress every N percent (default: 10).",
    # Media host
    "VIDQUEUE_MEDIA_API_KEY": "Media host API key (APIVIDEO_API_KEY is also read). Unset => offline demo.",
    "VIDQUEUE_MEDIA_API_BASE_URL": "Media host API base URL (default: https://ws.api.video).",
    "VIDQUEUE_MEDIA_VOD_BASE_URL": "Playback base URL (default: https://vod.api.video/vod).",
    "VIDQUEUE_MEDIA_TIMEOUT_SECONDS": "HTTP connect/pool timeout (default: 15).",
    "VIDQUEUE_MEDIA_CREATE_RETRIES": "Attempts for creating the remote video (default: 3).",
    "VIDQUEUE_UPLOAD_CHUNK_SIZE": "Bytes per streamed chunk (default: 1048576).",
    # Demo
    "VIDQUEUE_OFFLINE_STEP_DELAY": "Seconds between offline demo progress steps (default: 0.2).",
}
