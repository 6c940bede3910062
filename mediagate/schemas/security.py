from __future__ import annotations

"""
MediaGate — Effective security policy

`SecurityPolicy` is the merged view of configuration defaults and the optional
`security_settings` row. It is loaded once per request and passed to every
gate, so a single request never sees two different policies.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from mediagate.core.config import Settings, settings

HotlinkProtection = Literal["BLOCK_STRICT", "LOG_ONLY", "DISABLED"]


class SecurityPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    hotlink_protection: HotlinkProtection = "LOG_ONLY"
    ip_rate_limit: int = Field(1000, ge=1)
    session_rate_limit: int = Field(600, ge=1)
    rate_limit_window_seconds: int = Field(60, ge=1)
    track_analytics: bool = True
    track_security_logs: bool = True

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "SecurityPolicy":
        return cls(
            hotlink_protection=s.HOTLINK_PROTECTION,
            ip_rate_limit=s.IP_RATE_LIMIT,
            session_rate_limit=s.SESSION_RATE_LIMIT,
            rate_limit_window_seconds=s.RATE_LIMIT_WINDOW_SECONDS,
            track_analytics=s.TRACK_ANALYTICS,
            track_security_logs=s.TRACK_SECURITY_LOGS,
        )


__all__ = ["SecurityPolicy", "HotlinkProtection"]
