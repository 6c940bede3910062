from __future__ import annotations

"""
📈 MediaGate — Video Analytics (usage reporting)

One row per tracked access: page visits, completed downloads, served ranges.
`bandwidth` is the byte count scheduled for delivery on that request.
"""

from uuid import uuid4

from sqlalchemy import BigInteger, Column, DateTime, Index, String, func, text
from sqlalchemy.dialects.postgresql import UUID

from mediagate.db.base_class import Base


class VideoAnalytics(Base):
    __tablename__ = "video_analytics"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    video_id = Column(String(64), nullable=False, index=True)
    project_id = Column(String(64), nullable=False, index=True)
    event_type = Column(String(32), nullable=False, doc="PAGE_VISIT | DOWNLOAD_COMPLETE | STREAM_RANGE")
    session_id = Column(String(255), nullable=True)
    token_fingerprint = Column(String(32), nullable=True)
    quality = Column(String(16), nullable=True)
    bandwidth = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_video_analytics_video_event_ts", "video_id", "event_type", text("created_at DESC")),
    )
