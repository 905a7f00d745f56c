# src/vidqueue/storage/probe.py

from __future__ import annotations

import os
from pathlib import Path
from urllib.parse import unquote, urlparse


def local_path(source: str) -> Path:
    """Turn a plain path or a file:// URI into a filesystem path."""
    if source.startswith("file://"):
        return Path(unquote(urlparse(source).path))
    return Path(source).expanduser()


def file_size(source: str) -> int | None:
    try:
        st = os.stat(local_path(source))
    except OSError:
        return None
    return int(st.st_size)


class FileSizeProbe:
    """SizeProbe over the local filesystem."""

    def stat_size(self, source: str) -> int | None:
        return file_size(source)
