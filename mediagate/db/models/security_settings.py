from __future__ import annotations

"""
⚙️ MediaGate — Runtime Security Settings

A single row (`id='default'`) that lets operators flip hotlink enforcement and
rate limits without a redeploy. Missing row → configuration defaults.
"""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, func

from mediagate.db.base_class import Base


class SecuritySettings(Base):
    __tablename__ = "security_settings"

    id = Column(String(32), primary_key=True, default="default")
    hotlink_protection = Column(String(16), nullable=False, default="LOG_ONLY")
    ip_rate_limit = Column(Integer, nullable=False, default=1000)
    session_rate_limit = Column(Integer, nullable=False, default=600)
    track_analytics = Column(Boolean, nullable=False, default=True)
    track_security_logs = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
