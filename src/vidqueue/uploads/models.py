# src/vidqueue/uploads/models.py

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import Any


class UploadStatus(StrEnum):
    """
    Upload lifecycle status.

    Notes:
    - "cancelled" is not a status: cancelling deletes the task row.
    - "paused" tasks stay in the queue and can be resumed (restart, not resume).
    """

    PENDING = "pending"
    UPLOADING = "uploading"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def from_db(cls, raw: str | None) -> UploadStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except Exception:
            return cls.PENDING


class UploadCategory(StrEnum):
    CAR = "car"
    HORSE = "horse"
    REAL_ESTATE = "real_estate"

    @classmethod
    def parse(cls, raw: str | None, default: UploadCategory | None = None) -> UploadCategory:
        fallback = default or cls.CAR
        if not raw:
            return fallback
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return fallback


class OpResult(StrEnum):
    """Outcome of pause/resume/cancel/retry. Never raised, always returned."""

    OK = "ok"
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"


@dataclass(slots=True, frozen=True)
class UploadTask:
    id: str
    source: str
    category: UploadCategory
    status: UploadStatus
    created_at: float

    listing_id: str | None = None

    progress: int = 0
    uploaded_bytes: int = 0
    total_bytes: int = 0

    remote_id: str | None = None
    remote_url: str | None = None
    thumbnail_url: str | None = None
    error: str | None = None

    started_at: float | None = None
    completed_at: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["category"] = self.category.value
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UploadTask:
        """
        Rebuild a task from its persisted form.

        Raises KeyError/TypeError/ValueError on entries that lack an id or a source;
        the store skips those.
        """
        task_id = str(data["id"])
        source = str(data["source"])
        if not task_id or not source:
            raise ValueError("task entry without id/source")

        total = max(0, int(data.get("total_bytes") or 0))
        progress = min(100, max(0, int(data.get("progress") or 0)))

        return cls(
            id=task_id,
            source=source,
            category=UploadCategory.parse(data.get("category")),
            status=UploadStatus.from_db(data.get("status")),
            created_at=float(data.get("created_at") or 0.0),
            listing_id=data.get("listing_id"),
            progress=progress,
            uploaded_bytes=max(0, int(data.get("uploaded_bytes") or 0)),
            total_bytes=total,
            remote_id=data.get("remote_id"),
            remote_url=data.get("remote_url"),
            thumbnail_url=data.get("thumbnail_url"),
            error=data.get("error"),
            started_at=_opt_float(data.get("started_at")),
            completed_at=_opt_float(data.get("completed_at")),
        )


def _opt_float(v: Any) -> float | None:
    return float(v) if v is not None else None


def bytes_for(total_bytes: int, progress: int) -> int:
    return round(total_bytes * progress / 100)
