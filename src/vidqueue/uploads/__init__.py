"""
Upload queue subsystem.

Components:
- models.py: data structures (UploadTask, UploadStatus, UploadCategory, OpResult)
- persistence.py: whole-queue JSON record under one key of a KeyValueStore
- task_store.py: in-memory authoritative task map + checkpointed persistence
- subscriptions.py: per-task progress/completion/error callbacks
- scheduler.py: FIFO slot allocation under a concurrency cap
- engine.py: drives one task through its transfer
- queue.py: UploadQueue, the public API composing the above
"""

from .models import OpResult, UploadCategory, UploadStatus, UploadTask
from .queue import UploadQueue

__all__ = ["OpResult", "UploadCategory", "UploadStatus", "UploadTask", "UploadQueue"]
