# mediagate/services/media_resolver.py
from __future__ import annotations

"""
MediaGate — Which file does a token actually serve?

Precedence
----------
1) Approved video → original (for every quality).
2) Admin explicitly asking for `original` → original.
3) `1080p` → 1080p preview, falling back to 720p when not rendered yet.
4) Anything else → 720p preview, falling back to 1080p.
5) Nothing on record → None (the route answers 404 "Preview not available").
"""

import os
from typing import Optional

from mediagate.api.http_utils import sanitize_filename
from mediagate.db.models.project import Project, Video


def resolve_media_path(video: Video, quality: str, *, is_admin: bool = False) -> Optional[str]:
    original = video.original_storage_path or None
    if original and video.approved:
        return original
    if original and is_admin and quality == "original":
        return original
    if quality == "1080p":
        return video.preview_1080_path or video.preview_720_path or None
    return video.preview_720_path or video.preview_1080_path or None


def is_original(video: Video, path: Optional[str]) -> bool:
    return bool(path) and path == video.original_storage_path


def download_filename(video: Video, project: Optional[Project], quality: str, path: Optional[str]) -> str:
    """Uploaded name for originals; `{project title}_{quality}.mp4` for previews."""
    if is_original(video, path):
        fallback_ext = os.path.splitext(path or "")[1] or ".mp4"
        return video.original_file_name or f"{video.name or 'video'}{fallback_ext}"
    title = (project.title if project is not None else None) or video.name or "video"
    label = "1080p" if path and path == video.preview_1080_path else "720p"
    return f"{sanitize_filename(title, fallback='video')}_{label}.mp4"


__all__ = ["resolve_media_path", "is_original", "download_filename"]
