# src/vidqueue/transfer/http_transfer.py

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import httpx

from ..core.ports import ProgressFn, TransferError, TransferResult
from ..storage.probe import local_path

logger = logging.getLogger(__name__)

# Progress milestones reported to the queue.
PROGRESS_STARTED = 5
PROGRESS_TOKEN = 15
PROGRESS_UPLOAD_START = 20
PROGRESS_UPLOAD_END = 90
PROGRESS_DONE = 100


def _is_retryable_status(code: int) -> bool:
    return code == 429 or code >= 500


def friendly_transfer_error_message(err: Exception) -> str:
    if isinstance(err, httpx.HTTPStatusError):
        code = err.response.status_code
        if code in (401, 403):
            return "Media host rejected the API key. Check VIDQUEUE_MEDIA_API_KEY."
        if code == 429:
            return "Media host is rate-limiting uploads. Try again later."
        return f"Media host error (HTTP {code})."
    if isinstance(err, httpx.TimeoutException):
        return "Media host timed out. Try again later."
    if isinstance(err, httpx.TransportError):
        return "Media host is unreachable. Check your connection."
    return str(err).strip() or "Upload error."


class HttpTransfer:
    """
    Uploads a video file to an api.video-style media host.

    Flow:
    - POST /videos (bearer auth) -> {videoId, uploadToken}; retried with
      exponential backoff on 429/5xx/network errors, never on other 4xx
    - POST /upload?token=... with a streamed multipart body

    No HTTP-level resume: every call sends the whole file.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        vod_base_url: str,
        timeout_seconds: float = 15.0,
        create_retries: int = 3,
        chunk_size: int = 1024 * 1024,
        retry_base_delay: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key or not api_key.strip():
            raise RuntimeError("Media API key is not set. Set VIDQUEUE_MEDIA_API_KEY in your .env.")
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key.strip()
        self._vod_base_url = vod_base_url.rstrip("/")
        self._create_retries = max(1, int(create_retries))
        self._chunk_size = max(1, int(chunk_size))
        self._retry_base_delay = max(0.0, float(retry_base_delay))

        # Uploads of large files may legitimately take long; only connect/pool are bounded tightly.
        timeout = httpx.Timeout(connect=timeout_seconds, read=timeout_seconds * 4, write=None, pool=timeout_seconds)
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, settings, *, client: httpx.AsyncClient | None = None) -> HttpTransfer:
        return cls(
            base_url=settings.media_api_base_url,
            api_key=settings.media_api_key or "",
            vod_base_url=settings.media_vod_base_url,
            timeout_seconds=settings.media_timeout_seconds,
            create_retries=settings.media_create_retries,
            chunk_size=settings.upload_chunk_size,
            client=client,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ---- URLs ----

    def hls_url(self, video_id: str) -> str:
        return f"{self._vod_base_url}/{video_id}/hls/manifest.m3u8"

    def thumbnail_url(self, video_id: str) -> str:
        return f"{self._vod_base_url}/{video_id}/thumbnail.jpg"

    # ---- transfer ----

    async def transfer(
        self,
        source: str,
        category: str,
        on_progress: ProgressFn,
        options: dict[str, Any] | None = None,
    ) -> TransferResult:
        options = options or {}
        path = local_path(source)
        if not path.is_file():
            raise TransferError(f"Video file not found: {source}")

        logger.info("upload_started source=%s category=%s", source, category)
        on_progress(PROGRESS_STARTED)

        metadata = {
            "title": options.get("title") or f"{category} Video",
            "description": options.get("description") or "Video uploaded by vidqueue",
            "public": True,
            "tags": options.get("tags") or [category, "vidqueue"],
        }
        video_id, upload_token = await self._create_video(metadata)
        on_progress(PROGRESS_TOKEN)

        on_progress(PROGRESS_UPLOAD_START)
        uploaded_id = await self._upload_file(path, upload_token, on_progress)
        final_id = uploaded_id or video_id
        if not final_id:
            raise TransferError("Media host returned no video id.")

        on_progress(PROGRESS_DONE)
        logger.info("upload_success video_id=%s", final_id)
        return TransferResult(
            remote_id=final_id,
            remote_url=self.hls_url(final_id),
            thumbnail_url=self.thumbnail_url(final_id),
        )

    async def _create_video(self, metadata: dict[str, Any]) -> tuple[str, str]:
        last_error: Exception | None = None

        for attempt in range(self._create_retries):
            try:
                resp = await self._client.post(
                    f"{self._base_url}/videos",
                    json=metadata,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
                resp.raise_for_status()
                data = resp.json()
                if not isinstance(data, dict):
                    raise ValueError("expected a JSON object")
                return str(data.get("videoId") or ""), str(data.get("uploadToken") or "")
            except httpx.HTTPStatusError as e:
                last_error = e
                if not _is_retryable_status(e.response.status_code):
                    raise TransferError(friendly_transfer_error_message(e)) from e
                logger.info("create video: HTTP %s (attempt %d)", e.response.status_code, attempt + 1)
            except httpx.TransportError as e:
                last_error = e
                logger.info("create video: %s (attempt %d)", e.__class__.__name__, attempt + 1)
            except ValueError as e:
                raise TransferError("Media host returned an invalid response.") from e

            if attempt < self._create_retries - 1:
                await asyncio.sleep(self._retry_base_delay * (2 ** attempt))

        if last_error is not None:
            raise TransferError(friendly_transfer_error_message(last_error)) from last_error
        raise TransferError("Failed to create video.")

    async def _upload_file(self, path: Path, upload_token: str, on_progress: ProgressFn) -> str:
        if not upload_token:
            raise TransferError("Media host returned no upload token.")

        boundary = secrets.token_hex(16)
        head = (
            f"--{boundary}\r\n"
            f'Content-Disposition: form-data; name="file"; filename="{path.name}"\r\n'
            "Content-Type: application/octet-stream\r\n\r\n"
        ).encode()
        tail = f"\r\n--{boundary}--\r\n".encode()
        size = path.stat().st_size
        span = PROGRESS_UPLOAD_END - PROGRESS_UPLOAD_START

        async def body() -> AsyncIterator[bytes]:
            yield head
            sent = 0
            with path.open("rb") as f:
                while chunk := f.read(self._chunk_size):
                    sent += len(chunk)
                    on_progress(PROGRESS_UPLOAD_START + (span * sent // size if size else span))
                    yield chunk
            yield tail

        try:
            resp = await self._client.post(
                f"{self._base_url}/upload",
                params={"token": upload_token},
                content=body(),
                headers={
                    "Content-Type": f"multipart/form-data; boundary={boundary}",
                    "Content-Length": str(len(head) + size + len(tail)),
                },
            )
        except httpx.TransportError as e:
            raise TransferError(friendly_transfer_error_message(e)) from e

        if resp.status_code not in (200, 201):
            raise TransferError(f"Upload failed with status {resp.status_code}")
        try:
            data = resp.json()
        except ValueError:
            return ""
        return str(data.get("videoId") or "") if isinstance(data, dict) else ""
