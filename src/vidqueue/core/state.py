# src/vidqueue/core/state.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..uploads.queue import UploadQueue
from .ports import KeyValueStore, Transfer


@dataclass
class AppState:
    # Settings are stored on the state so commands can show them.
    settings: Any

    queue: UploadQueue
    transfer: Transfer
    kv_store: KeyValueStore

    offline: bool = False
    # Ids added from this console session (events are printed for them).
    watched: set[str] = field(default_factory=set)
