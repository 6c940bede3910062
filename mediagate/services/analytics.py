# mediagate/services/analytics.py
from __future__ import annotations

"""
MediaGate — Playback analytics (best-effort)

Records completed downloads and served ranges in `video_analytics`, and photo
downloads in `album_analytics`. Tracking
is gated by the effective `track_analytics` flag, skipped for admins, and never
fails the request: DB errors are rolled back and logged.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from mediagate.db.models.album_analytics import AlbumAnalytics
from mediagate.db.models.video_analytics import VideoAnalytics
from mediagate.schemas.security import SecurityPolicy

logger = logging.getLogger(__name__)

EVENT_DOWNLOAD_COMPLETE = "DOWNLOAD_COMPLETE"
EVENT_STREAM_RANGE = "STREAM_RANGE"
EVENT_PAGE_VISIT = "PAGE_VISIT"
EVENT_PHOTO_DOWNLOAD = "PHOTO_DOWNLOAD"


class AnalyticsTracker:
    def __init__(self, db: Optional[AsyncSession], policy: SecurityPolicy) -> None:
        self.db = db
        self.policy = policy

    async def track_access(
        self,
        event_type: str,
        *,
        video_id: str,
        project_id: str,
        session_id: Optional[str] = None,
        token_fingerprint: Optional[str] = None,
        quality: Optional[str] = None,
        bandwidth: int = 0,
        is_admin: bool = False,
    ) -> bool:
        """Insert one analytics row. Returns True when a row was written."""
        if is_admin or not self.policy.track_analytics or self.db is None:
            return False
        try:
            self.db.add(
                VideoAnalytics(
                    video_id=video_id,
                    project_id=project_id,
                    event_type=event_type,
                    session_id=session_id,
                    token_fingerprint=token_fingerprint,
                    quality=quality,
                    bandwidth=max(0, int(bandwidth)),
                )
            )
            await self.db.commit()
            return True
        except Exception:
            await self._rollback()
            logger.exception("Analytics write failed (event=%s video=%s)", event_type, video_id)
            return False

    async def track_photo_download(
        self,
        *,
        photo_id: str,
        album_id: str,
        project_id: str,
        variant: str = "full",
        session_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        is_admin: bool = False,
    ) -> bool:
        if is_admin or not self.policy.track_analytics or self.db is None:
            return False
        try:
            self.db.add(
                AlbumAnalytics(
                    project_id=project_id,
                    album_id=album_id,
                    photo_id=photo_id,
                    event_type=EVENT_PHOTO_DOWNLOAD,
                    variant="social" if variant == "social" else "full",
                    session_id=session_id,
                    ip_address=ip_address,
                )
            )
            await self.db.commit()
            return True
        except Exception:
            await self._rollback()
            logger.exception("Album analytics write failed (photo=%s)", photo_id)
            return False

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except Exception:
            logger.debug("Analytics rollback failed", exc_info=True)


__all__ = [
    "AnalyticsTracker",
    "EVENT_DOWNLOAD_COMPLETE",
    "EVENT_STREAM_RANGE",
    "EVENT_PAGE_VISIT",
    "EVENT_PHOTO_DOWNLOAD",
]
