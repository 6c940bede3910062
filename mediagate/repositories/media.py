from __future__ import annotations

"""Media repository.

Read-only access to projects, videos (and their assets), albums (and their
photos) and the runtime security settings row. `SqlMediaRepository` is the
production implementation; `MemoryMediaRepository` backs local development and
tests.
"""

import logging
import os
from typing import Dict, Optional, Set

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mediagate.db.models.project import Album, AlbumPhoto, Project, Video, VideoAsset
from mediagate.db.models.security_settings import SecuritySettings
from mediagate.schemas.security import SecurityPolicy

logger = logging.getLogger(__name__)


class MediaRepositoryProtocol:
    async def get_project(self, project_id: str) -> Optional[Project]:
        raise NotImplementedError

    async def get_video(self, video_id: str) -> Optional[Video]:
        raise NotImplementedError

    async def get_album(self, album_id: str) -> Optional[Album]:
        raise NotImplementedError

    async def get_photo(self, photo_id: str) -> Optional[AlbumPhoto]:
        raise NotImplementedError

    async def get_video_asset_ids(self, video_id: str) -> Set[str]:
        raise NotImplementedError

    async def get_album_photo_ids(self, album_id: str) -> Set[str]:
        raise NotImplementedError

    async def get_security_policy(self) -> SecurityPolicy:
        raise NotImplementedError


def merge_policy(row: Optional[SecuritySettings], base: Optional[SecurityPolicy] = None) -> SecurityPolicy:
    """Overlay the settings row (when present) on the configuration defaults."""
    base = base or SecurityPolicy.from_settings()
    if row is None:
        return base
    return base.model_copy(
        update={
            "hotlink_protection": (row.hotlink_protection or base.hotlink_protection).upper(),
            "ip_rate_limit": row.ip_rate_limit or base.ip_rate_limit,
            "session_rate_limit": row.session_rate_limit or base.session_rate_limit,
            "track_analytics": bool(row.track_analytics),
            "track_security_logs": bool(row.track_security_logs),
        }
    )


class SqlMediaRepository(MediaRepositoryProtocol):
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_project(self, project_id: str) -> Optional[Project]:
        return await self.db.get(Project, project_id)

    async def get_video(self, video_id: str) -> Optional[Video]:
        return await self.db.get(Video, video_id)

    async def get_album(self, album_id: str) -> Optional[Album]:
        return await self.db.get(Album, album_id)

    async def get_photo(self, photo_id: str) -> Optional[AlbumPhoto]:
        return await self.db.get(AlbumPhoto, photo_id)

    async def get_video_asset_ids(self, video_id: str) -> Set[str]:
        rows = await self.db.execute(select(VideoAsset.id).where(VideoAsset.video_id == video_id))
        return set(rows.scalars().all())

    async def get_album_photo_ids(self, album_id: str) -> Set[str]:
        rows = await self.db.execute(select(AlbumPhoto.id).where(AlbumPhoto.album_id == album_id))
        return set(rows.scalars().all())

    async def get_security_policy(self) -> SecurityPolicy:
        try:
            row = (
                await self.db.execute(select(SecuritySettings).where(SecuritySettings.id == "default"))
            ).scalar_one_or_none()
        except SQLAlchemyError:
            logger.exception("Failed to load security settings; using configuration defaults")
            await self.db.rollback()
            row = None
        return merge_policy(row)


class MemoryMediaRepository(MediaRepositoryProtocol):
    """Dict-backed repository; objects are plain (transient) ORM instances."""

    def __init__(self, *, policy: Optional[SecurityPolicy] = None):
        self.projects: Dict[str, Project] = {}
        self.videos: Dict[str, Video] = {}
        self.albums: Dict[str, Album] = {}
        self.photos: Dict[str, AlbumPhoto] = {}
        self.video_assets: Dict[str, VideoAsset] = {}
        self.policy = policy

    def add(self, obj) -> None:
        if isinstance(obj, Project):
            self.projects[obj.id] = obj
        elif isinstance(obj, Video):
            self.videos[obj.id] = obj
        elif isinstance(obj, Album):
            self.albums[obj.id] = obj
        elif isinstance(obj, AlbumPhoto):
            self.photos[obj.id] = obj
        elif isinstance(obj, VideoAsset):
            self.video_assets[obj.id] = obj
        else:
            raise TypeError(f"Unsupported object: {type(obj).__name__}")

    async def get_project(self, project_id: str) -> Optional[Project]:
        return self.projects.get(project_id)

    async def get_video(self, video_id: str) -> Optional[Video]:
        return self.videos.get(video_id)

    async def get_album(self, album_id: str) -> Optional[Album]:
        return self.albums.get(album_id)

    async def get_photo(self, photo_id: str) -> Optional[AlbumPhoto]:
        return self.photos.get(photo_id)

    async def get_video_asset_ids(self, video_id: str) -> Set[str]:
        return {a.id for a in self.video_assets.values() if a.video_id == video_id}

    async def get_album_photo_ids(self, album_id: str) -> Set[str]:
        return {p.id for p in self.photos.values() if p.album_id == album_id}

    async def get_security_policy(self) -> SecurityPolicy:
        return self.policy or SecurityPolicy.from_settings()


def _import_string(path: str):
    module_path, _, class_name = path.partition(":")
    if not module_path or not class_name:
        raise ValueError("MEDIA_REPOSITORY_IMPL must be 'module.sub:ClassName'")
    module = __import__(module_path, fromlist=[class_name])
    return getattr(module, class_name)


def get_media_repository(db: AsyncSession) -> MediaRepositoryProtocol:
    impl_path = os.environ.get("MEDIA_REPOSITORY_IMPL")
    if impl_path:
        cls = _import_string(impl_path)
        return cls(db)  # type: ignore
    return SqlMediaRepository(db)


__all__ = [
    "MediaRepositoryProtocol",
    "SqlMediaRepository",
    "MemoryMediaRepository",
    "merge_policy",
    "get_media_repository",
]
