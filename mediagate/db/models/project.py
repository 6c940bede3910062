from __future__ import annotations

"""
🎬 MediaGate — Projects, Videos & Albums (read-only collaborators)
==================================================================

The media access path only *reads* these rows: approval state, storage paths,
project status and share settings. Writes belong to the admin application.

Design highlights
-----------------
• String primary keys (opaque ids issued by the admin application).
• `Video.approved` is a per-video gate: approved videos stream the original,
  unapproved ones only stream watermarked previews.
• `Project.share_password` set → viewers also need the password auth cookie.
• `AlbumPhoto` streams only once `status == READY`; the social rendition has its
  own status.
"""

from uuid import uuid4

from sqlalchemy import BigInteger, Boolean, Column, ForeignKey, Index, String
from sqlalchemy.orm import relationship

from mediagate.db.base_class import Base, TimestampMixin


def _new_id() -> str:
    return uuid4().hex


class Project(TimestampMixin, Base):
    __tablename__ = "projects"

    id = Column(String(64), primary_key=True, default=_new_id)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True)
    status = Column(String(32), nullable=False, default="IN_REVIEW", doc="IN_REVIEW | APPROVED | CLOSED")
    share_password = Column(String(255), nullable=True, doc="Hashed share password; NULL = no password gate")
    guest_mode = Column(Boolean, nullable=False, default=False)

    videos = relationship("Video", back_populates="project", lazy="selectin")

    @property
    def is_closed(self) -> bool:
        return (self.status or "").upper() == "CLOSED"

    @property
    def requires_password(self) -> bool:
        return bool(self.share_password)


class Video(TimestampMixin, Base):
    __tablename__ = "videos"

    id = Column(String(64), primary_key=True, default=_new_id)
    project_id = Column(String(64), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    version_label = Column(String(64), nullable=False, default="v1")
    approved = Column(Boolean, nullable=False, default=False)

    # ── Storage (paths relative to STORAGE_ROOT) ──────────────
    original_file_name = Column(String(512), nullable=False)
    original_file_size = Column(BigInteger, nullable=True)
    original_storage_path = Column(String(1024), nullable=False)
    preview_720_path = Column(String(1024), nullable=True)
    preview_1080_path = Column(String(1024), nullable=True)
    thumbnail_path = Column(String(1024), nullable=True)

    project = relationship("Project", back_populates="videos", lazy="joined")

    __table_args__ = (Index("ix_videos_project_approved", "project_id", "approved"),)


class Album(TimestampMixin, Base):
    __tablename__ = "albums"

    id = Column(String(64), primary_key=True, default=_new_id)
    project_id = Column(String(64), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)


class VideoAsset(TimestampMixin, Base):
    """Deliverable files attached to a video (stills, captions, stems); archive selections pick from these."""

    __tablename__ = "video_assets"

    id = Column(String(64), primary_key=True, default=_new_id)
    video_id = Column(String(64), ForeignKey("videos.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String(512), nullable=False)
    file_size = Column(BigInteger, nullable=True)
    storage_path = Column(String(1024), nullable=False)


class AlbumPhoto(TimestampMixin, Base):
    __tablename__ = "album_photos"

    id = Column(String(64), primary_key=True, default=_new_id)
    album_id = Column(String(64), ForeignKey("albums.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String(512), nullable=False)
    storage_path = Column(String(1024), nullable=False)
    status = Column(String(16), nullable=False, default="PENDING", doc="PENDING | PROCESSING | READY | ERROR")

    # Social-size rendition, produced after upload
    social_storage_path = Column(String(1024), nullable=True)
    social_status = Column(String(16), nullable=False, default="PENDING")

    @property
    def is_ready(self) -> bool:
        return (self.status or "").upper() == "READY"

    @property
    def social_ready(self) -> bool:
        return (self.social_status or "").upper() == "READY" and bool(self.social_storage_path)
