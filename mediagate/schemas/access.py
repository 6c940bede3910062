from __future__ import annotations

"""
MediaGate — Access token & issuance schemas (Pydantic v2)

Cache payloads use camelCase on the wire (`videoId`, `projectId`, ...) so entries
stay readable with `redis-cli` and interoperable with other consumers of the
same keys. Python code uses snake_case attributes.
"""

import hashlib
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

VideoQuality = Literal["720p", "1080p", "original"]
ArchiveKind = Literal["video", "album"]
ArchiveVariant = Literal["full", "social"]
PhotoVariant = Literal["full", "social"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


# ─────────────────────────────────────────────────────────────
# 🔑 Cache payloads
# ─────────────────────────────────────────────────────────────
class AccessTokenPayload(_CamelModel):
    """Value stored at ``video_access:{token}``."""

    video_id: str = Field(alias="videoId", min_length=1)
    project_id: str = Field(alias="projectId", min_length=1)
    quality: VideoQuality = "720p"
    session_id: str = Field("", alias="sessionId")
    ip_address: Optional[str] = Field(None, alias="ipAddress")
    issued_at: int = Field(alias="issuedAt", description="Epoch milliseconds")


class ArchiveTokenPayload(_CamelModel):
    """Value stored at ``zip_download:{token}``."""

    project_id: str = Field(alias="projectId", min_length=1)
    kind: ArchiveKind
    target_id: str = Field(alias="targetId", min_length=1)
    asset_ids: List[str] = Field(default_factory=list, alias="assetIds")
    variant: ArchiveVariant = "full"
    session_id: str = Field("", alias="sessionId")
    issued_at: int = Field(alias="issuedAt")

    @property
    def selection_digest(self) -> str:
        """Short digest of the selected asset ids; empty when the whole target is archived."""
        if not self.asset_ids:
            return ""
        joined = ",".join(sorted(set(self.asset_ids)))
        return hashlib.sha256(joined.encode("utf-8")).hexdigest()[:12]

    @property
    def job_id(self) -> str:
        base = f"{self.kind}-{self.target_id}-{self.variant}"
        digest = self.selection_digest
        return f"{base}-{digest}" if digest else base


class PhotoTokenPayload(_CamelModel):
    """Value stored at ``photo_access:{token}``."""

    photo_id: str = Field(alias="photoId", min_length=1)
    album_id: str = Field(alias="albumId", min_length=1)
    project_id: str = Field(alias="projectId", min_length=1)
    session_id: str = Field(alias="sessionId", min_length=1)
    ip_address: Optional[str] = Field(None, alias="ipAddress")
    issued_at: int = Field(alias="issuedAt")


# ─────────────────────────────────────────────────────────────
# 📦 Route schemas
# ─────────────────────────────────────────────────────────────
class VideoTokenOut(BaseModel):
    token: str


class PhotoTokenOut(BaseModel):
    token: str


class ArchiveTokenIn(BaseModel):
    video_id: Optional[str] = Field(None, alias="videoId")
    album_id: Optional[str] = Field(None, alias="albumId")
    asset_ids: List[str] = Field(default_factory=list, alias="assetIds", max_length=500)
    variant: ArchiveVariant = "full"

    model_config = ConfigDict(populate_by_name=True)


class ArchiveTokenOut(BaseModel):
    token: str
    expires_in: int = Field(alias="expiresIn")

    model_config = ConfigDict(populate_by_name=True)


class ArchivePendingOut(BaseModel):
    status: Literal["generating"] = "generating"
    retry_after_ms: int = Field(alias="retryAfterMs")

    model_config = ConfigDict(populate_by_name=True)


__all__ = [
    "VideoQuality",
    "AccessTokenPayload",
    "ArchiveTokenPayload",
    "PhotoTokenPayload",
    "PhotoVariant",
    "VideoTokenOut",
    "PhotoTokenOut",
    "ArchiveTokenIn",
    "ArchiveTokenOut",
    "ArchivePendingOut",
]
