from __future__ import annotations

"""
🖼️ MediaGate — Album Analytics (photo downloads)
"""

from uuid import uuid4

from sqlalchemy import Column, DateTime, Index, String, func, text
from sqlalchemy.dialects.postgresql import UUID

from mediagate.db.base_class import Base


class AlbumAnalytics(Base):
    __tablename__ = "album_analytics"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    project_id = Column(String(64), nullable=False, index=True)
    album_id = Column(String(64), nullable=False, index=True)
    photo_id = Column(String(64), nullable=True)
    event_type = Column(String(32), nullable=False, doc="PHOTO_DOWNLOAD")
    variant = Column(String(16), nullable=False, default="full", doc="full | social")
    session_id = Column(String(255), nullable=True)
    ip_address = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_album_analytics_album_event_ts", "album_id", "event_type", text("created_at DESC")),
    )
