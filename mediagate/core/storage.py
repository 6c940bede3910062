from __future__ import annotations

"""
MediaGate • Local Storage Layout
================================

Documented layout (single private volume mounted at ``STORAGE_ROOT``):

    {STORAGE_ROOT}/
      projects/{project_id}/videos/{video_id}/original/{filename.ext}
      projects/{project_id}/videos/{video_id}/preview-720p.mp4
      projects/{project_id}/videos/{video_id}/preview-1080p.mp4
      projects/{project_id}/albums/{album_id}/photos/{filename.ext}
      archives/{project_id}/{kind}-{target_id}-{variant}[-{selection}].zip

Database rows store paths **relative** to the root. Every path goes through
`LocalStorage.resolve`, which refuses absolute paths and traversal so a bad
row can never escape the volume.
"""

import asyncio
import os
from pathlib import Path
from typing import Iterator, Optional

from mediagate.core.config import settings
from mediagate.services.streaming import iter_file_range

ARCHIVE_PATH_TEMPLATE = "archives/{project_id}/{job_id}.zip"


class StoragePathError(ValueError):
    """Raised when a stored path would resolve outside the storage root."""


class LocalStorage:
    """Filesystem-backed storage exposing `stat_file` and `open_read_stream`."""

    def __init__(self, root: Optional[str] = None) -> None:
        self.root = Path(root or settings.STORAGE_ROOT).resolve()

    def resolve(self, relative: str) -> Path:
        rel = (relative or "").strip().replace("\\", "/")
        if not rel or rel.startswith("/") or ".." in rel.split("/"):
            raise StoragePathError(f"Unsafe storage path: {relative!r}")
        full = (self.root / rel).resolve()
        if full != self.root and self.root not in full.parents:
            raise StoragePathError(f"Unsafe storage path: {relative!r}")
        return full

    async def stat_file(self, relative: str) -> Optional[int]:
        """Size in bytes, or None when the file does not exist (or is not a regular file)."""
        path = self.resolve(relative)

        def _stat() -> Optional[int]:
            try:
                st = os.stat(path)
            except FileNotFoundError:
                return None
            return st.st_size if os.path.isfile(path) else None

        return await asyncio.to_thread(_stat)

    def open_read_stream(self, relative: str, start: int, end: int, block_size: int) -> Iterator[bytes]:
        """Pull-based iterator over ``[start, end]``; closing it closes the file."""
        return iter_file_range(self.resolve(relative), start, end, block_size)


def get_storage() -> LocalStorage:
    """FastAPI dependency / factory (reads STORAGE_ROOT at call time)."""
    return LocalStorage(settings.STORAGE_ROOT)


__all__ = ["LocalStorage", "StoragePathError", "get_storage", "ARCHIVE_PATH_TEMPLATE"]
