from __future__ import annotations

"""
🛡️ MediaGate — Security Events (append-only)
============================================

Every gate on the media path (rate limits, token/session binding, hotlink
heuristics, streaming I/O) records its security-relevant decisions here.

Design highlights
-----------------
• **Immutable record** keyed by UUID; timestamps are **UTC & DB-driven**.
• Never updated or deleted by the service; retention is an ops concern.
• `details` is scrubbed JSONB; token values never appear (fingerprints only).
"""

from uuid import uuid4

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Index, String, func, text
from sqlalchemy.dialects.postgresql import INET, JSONB, UUID

from mediagate.db.base_class import Base


class SecurityEvent(Base):
    __tablename__ = "security_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    type = Column(String(64), nullable=False, index=True)
    severity = Column(String(16), nullable=False, default="INFO", server_default="INFO")

    project_id = Column(String(64), nullable=True, index=True)
    video_id = Column(String(64), nullable=True)
    session_id = Column(String(255), nullable=True)
    ip_address = Column(INET, nullable=True)
    referer = Column(String(2048), nullable=True)
    request_id = Column(String(128), nullable=True)

    details = Column(JSONB, nullable=True)
    was_blocked = Column(Boolean, nullable=False, default=False, server_default=text("false"))

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __mapper_args__ = {"eager_defaults": True}

    __table_args__ = (
        CheckConstraint("severity IN ('INFO','WARNING','CRITICAL')", name="severity_valid"),
        Index("ix_security_events_type_ts_desc", "type", text("created_at DESC")),
        Index("ix_security_events_project_ts_desc", "project_id", text("created_at DESC")),
        Index("ix_security_events_ip_ts_desc", "ip_address", text("created_at DESC")),
    )
