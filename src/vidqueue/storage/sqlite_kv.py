# src/vidqueue/storage/sqlite_kv.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
from pathlib import Path

logger = logging.getLogger(__name__)


class SQLiteKeyValueStore:
    """
    Durable string-keyed store on SQLite.

    The upload queue keeps its whole record under one key, so the schema is
    a single table. Each method opens its own connection (thread-safe, and
    nothing to leak when the process dies mid-upload).
    """

    def __init__(self, db_path: str | Path = "queue.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("KeyValueStore ready db=%s", self._db_path)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        with contextlib.suppress(sqlite3.DatabaseError):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            conn.commit()
        finally:
            conn.close()

    # ---- public API ----

    def get(self, key: str) -> str | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
            return None if row is None else str(row[0])
        finally:
            conn.close()

    def set(self, key: str, value: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO kv(key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, value, time.time()),
            )
            conn.commit()
        finally:
            conn.close()

    def delete(self, key: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.commit()
        finally:
            conn.close()

    def keys(self) -> list[str]:
        conn = self._get_conn()
        try:
            return [str(r[0]) for r in conn.execute("SELECT key FROM kv ORDER BY key").fetchall()]
        finally:
            conn.close()
