# mediagate/services/security_events.py
from __future__ import annotations

"""
MediaGate — Security Event Log (async, best-effort)
===================================================

Purpose
-------
Append-only audit sink for every security-relevant decision on the media path:
rate-limit hits, token/session mismatches, hotlink verdicts, blocked IPs and
streaming I/O failures.

Design notes
------------
- Three destinations per event: an immutable `security_events` row, a capped
  Redis ring (`security:events:recent`) for the admin dashboard, and the
  application log at the event's severity.
- **Best-effort**: every destination is independently guarded; `log()` never
  raises, so auditing can never break a request.
- `details` is scrubbed of secret-looking keys; tokens never reach this module
  (callers pass fingerprints).
- `TRACK_SECURITY_LOGS=false` (or the DB policy) disables persistence; the
  application log mirror stays on.

Usage
-----
    await events.log(
        SecurityEventType.RATE_LIMIT_HIT,
        severity=Severity.WARNING,
        request=request,
        project_id=project_id,
        details={"purpose": "content-stream-ip", "limit": 1000},
        was_blocked=True,
    )
"""

import ipaddress
import json
import time
from enum import Enum
from typing import Any, Dict, List, Optional

from fastapi import Request
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from mediagate.api.http_utils import fingerprint, get_client_ip
from mediagate.core.config import settings
from mediagate.core.metrics import inc_redis_error, inc_security_event
from mediagate.core.redis_client import redis_wrapper
from mediagate.db.models.security_event import SecurityEvent
from mediagate.middleware.request_id import get_request_id
from mediagate.schemas.security import SecurityPolicy

RECENT_EVENTS_KEY = "security:events:recent"


# ─────────────────────────────────────────────────────────────
# 📋 Enums
# ─────────────────────────────────────────────────────────────
class SecurityEventType(str, Enum):
    HOTLINK_DETECTED = "HOTLINK_DETECTED"
    HOTLINK_BLOCKED = "HOTLINK_BLOCKED"
    TOKEN_SESSION_MISMATCH = "TOKEN_SESSION_MISMATCH"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    BLOCKED_IP_ATTEMPT = "BLOCKED_IP_ATTEMPT"
    RATE_LIMIT_HIT = "RATE_LIMIT_HIT"
    STREAM_ERROR = "STREAM_ERROR"


class Severity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


# ─────────────────────────────────────────────────────────────
# 🔎 Helpers: detail scrubbing
# ─────────────────────────────────────────────────────────────
_SENSITIVE_KEYS = {"authorization", "token", "password", "secret", "cookie", "set-cookie", "x-admin-key"}


def _scrub(obj: Any) -> Any:
    """Recursively drop obvious secret keys from dicts/lists."""
    if isinstance(obj, dict):
        return {k: _scrub(v) for k, v in obj.items() if str(k).lower() not in _SENSITIVE_KEYS}
    if isinstance(obj, list):
        return [_scrub(v) for v in obj]
    return obj


def _safe_details(details: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if details is None:
        return None
    if not isinstance(details, dict):
        details = {"raw": str(details)}
    details = _scrub(details)
    try:
        json.dumps(details)
        return details
    except (TypeError, ValueError):
        return {"raw": "non-serializable details"}


def _inet_or_none(ip: Optional[str]) -> Optional[str]:
    if not ip:
        return None
    try:
        ipaddress.ip_address(ip)
        return ip
    except ValueError:
        return None


# ─────────────────────────────────────────────────────────────
# 🧠 Event log
# ─────────────────────────────────────────────────────────────
class SecurityEventLog:
    """Writes security events to the DB, the Redis ring and the application log."""

    def __init__(self, db: Optional[AsyncSession], policy: SecurityPolicy, *, recent_max: Optional[int] = None) -> None:
        self.db = db
        self.policy = policy
        self.recent_max = int(recent_max or settings.SECURITY_EVENTS_RECENT_MAX)

    def detached(self) -> "SecurityEventLog":
        """Same policy without the DB session (for use after the request scope ends)."""
        return SecurityEventLog(None, self.policy, recent_max=self.recent_max)

    async def log(
        self,
        event_type: SecurityEventType,
        *,
        severity: Severity = Severity.INFO,
        request: Optional[Request] = None,
        ip_address: Optional[str] = None,
        session_id: Optional[str] = None,
        project_id: Optional[str] = None,
        video_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        was_blocked: bool = False,
    ) -> None:
        """Record one event. Never raises."""
        try:
            ip = ip_address or (get_client_ip(request) if request is not None else None)
            referer = request.headers.get("referer") if request is not None else None
            request_id = get_request_id(request) if request is not None else None
            clean = _safe_details(details)
            sev = Severity(severity)
            etype = SecurityEventType(event_type)
        except Exception:
            logger.exception("[SECURITY] Failed to prepare security event")
            return

        logger.log(
            sev.value,
            f"[SECURITY] {etype.value} blocked={was_blocked} ip={ip} project={project_id} "
            f"video={video_id} details={clean}",
        )
        inc_security_event(etype.value, sev.value)

        if not self.policy.track_security_logs:
            return

        # ── [Step 1] Durable row ───────────────────────────────────────────
        if self.db is not None:
            try:
                self.db.add(
                    SecurityEvent(
                        type=etype.value,
                        severity=sev.value,
                        project_id=project_id,
                        video_id=video_id,
                        session_id=session_id,
                        ip_address=_inet_or_none(ip),
                        referer=(referer or None) and referer[:2048],
                        request_id=request_id or None,
                        details=clean,
                        was_blocked=bool(was_blocked),
                    )
                )
                await self.db.commit()
            except Exception:
                try:
                    await self.db.rollback()
                except Exception:
                    pass
                logger.exception("[SECURITY] Failed to persist security event")

        # ── [Step 2] Recent-events ring ────────────────────────────────────
        entry = {
            "type": etype.value,
            "severity": sev.value,
            "ipAddress": ip,
            "sessionFingerprint": fingerprint(session_id) if session_id else None,
            "projectId": project_id,
            "videoId": video_id,
            "wasBlocked": bool(was_blocked),
            "details": clean,
            "requestId": request_id or None,
            "createdAt": int(time.time() * 1000),
        }
        try:
            rc = redis_wrapper.client
            await rc.rpush(RECENT_EVENTS_KEY, json.dumps(entry, separators=(",", ":"), default=str))
            await rc.ltrim(RECENT_EVENTS_KEY, -self.recent_max, -1)
        except Exception:
            inc_redis_error("security_events")
            logger.warning("[SECURITY] Failed to push event to recent ring")


async def recent_security_events(limit: int = 100) -> List[Dict[str, Any]]:
    """Newest-first slice of the recent-events ring (bounded by `limit`)."""
    limit = max(1, int(limit))
    raw = await redis_wrapper.client.lrange(RECENT_EVENTS_KEY, -limit, -1)
    out: List[Dict[str, Any]] = []
    for item in reversed(raw or []):
        if isinstance(item, (bytes, bytearray)):
            item = item.decode("utf-8", errors="replace")
        try:
            out.append(json.loads(item))
        except (TypeError, ValueError):
            continue
    return out


__all__ = [
    "SecurityEventType",
    "Severity",
    "SecurityEventLog",
    "recent_security_events",
    "RECENT_EVENTS_KEY",
]
