# src/vidqueue/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the upload queue.

The queue depends on Protocols instead of concrete implementations.
This keeps the media host, the durable store and the file probe swappable
and makes testing easier.

Every port may be implemented either synchronously or with coroutines;
the queue awaits results that are awaitable.
"""

import inspect
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Awaitable, Protocol, TypeVar

T = TypeVar("T")

ProgressFn = Callable[[int], None]


@dataclass(slots=True, frozen=True)
class TransferResult:
    """What the media host returns for a finished upload."""

    remote_id: str
    remote_url: str
    thumbnail_url: str | None = None


class TransferError(Exception):
    """Transfer failure carrying a human-readable message."""


class Transfer(Protocol):
    """
    Moves the bytes of `source` to the remote media host.

    `on_progress(percent)` may be called zero or more times with 0..100.
    `options` carries optional metadata such as {"title": "..."}.
    Failures are raised as exceptions; str(exc) is shown to the user.
    """

    def transfer(
            self,
            source: str,
            category: str,
            on_progress: ProgressFn,
            options: dict[str, Any] | None = None,
    ) -> Awaitable[TransferResult]: ...


class SizeProbe(Protocol):
    """Returns the payload size in bytes, or None when it cannot be determined."""

    def stat_size(self, source: str) -> int | None | Awaitable[int | None]: ...


class KeyValueStore(Protocol):
    """
    Durable string-keyed store.

    Implementations may also provide `delete(key)`; without it, erasing the
    queue record writes an empty list instead.
    """

    def get(self, key: str) -> str | None | Awaitable[str | None]: ...
    def set(self, key: str, value: str) -> None | Awaitable[None]: ...


async def resolve(value: T | Awaitable[T]) -> T:
    """Await `value` if the port returned an awaitable, else return it as is."""
    if inspect.isawaitable(value):
        return await value
    return value  # type: ignore[return-value]
