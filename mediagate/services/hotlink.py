# mediagate/services/hotlink.py
from __future__ import annotations

"""
MediaGate — Hotlink detection & enforcement
===========================================

Heuristics (first match wins)
-----------------------------
1) **Blocked IP**: client IP in `HOTLINK_BLOCKED_IPS` → CRITICAL.
2) **Referer**: `Referer`/`Origin` host differs from the request host and is not
   allow-listed → WARNING (CRITICAL when the host, or a parent domain, is in
   `HOTLINK_BLOCKED_DOMAINS`). A missing referer alone is not suspicious;
   media elements and download managers often omit it.
3) **Velocity**: more than `HOTLINK_FREQUENCY_THRESHOLD` hits for one
   session+video inside `HOTLINK_FREQUENCY_WINDOW_SECONDS` → WARNING. Every
   `HOTLINK_FREQUENCY_LOG_EVERY` hits is logged as SUSPICIOUS_ACTIVITY.
4) **Session fan-out**: one session seen from more than
   `HOTLINK_MAX_IPS_PER_SESSION` IPs inside `HOTLINK_IP_WINDOW_SECONDS` → WARNING.

Enforcement
-----------
| Mode         | Verdict positive                                     |
|--------------|------------------------------------------------------|
| BLOCK_STRICT | HOTLINK_BLOCKED event + opaque 403                   |
| LOG_ONLY     | request proceeds (detection already logged)          |
| DISABLED     | detector never runs                                  |

Counter failures never block playback: a Redis error skips that heuristic.
"""

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional
from urllib.parse import urlparse

from fastapi import Request
from redis.exceptions import RedisError

from mediagate.api.http_utils import fingerprint, get_client_ip
from mediagate.core.config import Settings, settings
from mediagate.core.exceptions import AccessDeniedException
from mediagate.core.metrics import inc_hotlink, inc_redis_error
from mediagate.core.redis_client import redis_wrapper
from mediagate.schemas.security import SecurityPolicy
from mediagate.services.security_events import SecurityEventLog, SecurityEventType, Severity

logger = logging.getLogger(__name__)

FREQUENCY_KEY = "video_freq:{session_id}:{video_id}"
SESSION_IPS_KEY = "video_session_ips:{session_id}"


@dataclass(frozen=True)
class HotlinkPolicy:
    frequency_window_seconds: int = 300
    frequency_threshold: int = 3000
    frequency_log_every: int = 500
    ip_window_seconds: int = 300
    max_ips_per_session: int = 5
    blocked_ips: FrozenSet[str] = field(default_factory=frozenset)
    blocked_domains: FrozenSet[str] = field(default_factory=frozenset)
    allowed_referer_hosts: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "HotlinkPolicy":
        return cls(
            frequency_window_seconds=s.HOTLINK_FREQUENCY_WINDOW_SECONDS,
            frequency_threshold=s.HOTLINK_FREQUENCY_THRESHOLD,
            frequency_log_every=s.HOTLINK_FREQUENCY_LOG_EVERY,
            ip_window_seconds=s.HOTLINK_IP_WINDOW_SECONDS,
            max_ips_per_session=s.HOTLINK_MAX_IPS_PER_SESSION,
            blocked_ips=frozenset(s.hotlink_blocked_ips),
            blocked_domains=frozenset(s.hotlink_blocked_domains),
            allowed_referer_hosts=frozenset(s.hotlink_allowed_referer_hosts),
        )


@dataclass(frozen=True)
class HotlinkVerdict:
    is_hotlinking: bool
    reason: Optional[str] = None
    severity: Optional[Severity] = None


NOT_HOTLINKING = HotlinkVerdict(is_hotlinking=False)


# ─────────────────────────────────────────────────────────────
# 🔎 Helpers
# ─────────────────────────────────────────────────────────────
def _host_of(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    try:
        host = urlparse(url).hostname
    except ValueError:
        return None
    return host.lower() if host else None


def _request_host(request: Request) -> Optional[str]:
    raw = request.headers.get("host") or (request.url.hostname or "")
    host = raw.rsplit(":", 1)[0] if raw and not raw.endswith("]") else raw
    return host.strip("[]").lower() or None


def _domain_matches(host: str, domains: Iterable[str]) -> bool:
    return any(host == d or host.endswith("." + d) for d in domains)


# ─────────────────────────────────────────────────────────────
# 🧠 Detector
# ─────────────────────────────────────────────────────────────
async def detect_hotlinking(
    request: Request,
    session_id: str,
    video_id: str,
    project_id: str,
    *,
    events: SecurityEventLog,
    policy: Optional[HotlinkPolicy] = None,
) -> HotlinkVerdict:
    """Run the heuristics in order and return the first positive verdict."""
    policy = policy or HotlinkPolicy.from_settings()
    ip = get_client_ip(request)
    ctx = {"request": request, "session_id": session_id, "project_id": project_id, "video_id": video_id}

    # ── [Step 1] Blocked IP ────────────────────────────────────────────────
    if ip in policy.blocked_ips:
        await events.log(
            SecurityEventType.BLOCKED_IP_ATTEMPT,
            severity=Severity.CRITICAL,
            details={"ip": ip},
            **ctx,
        )
        return HotlinkVerdict(True, f"Blocked IP: {ip}", Severity.CRITICAL)

    # ── [Step 2] Referer / Origin ──────────────────────────────────────────
    referer = request.headers.get("referer") or request.headers.get("origin")
    ref_host = _host_of(referer)
    own_host = _request_host(request)
    if ref_host and ref_host != own_host and not _domain_matches(ref_host, policy.allowed_referer_hosts):
        blocked = _domain_matches(ref_host, policy.blocked_domains)
        verdict = HotlinkVerdict(
            True,
            f"{'Blocked domain' if blocked else 'External referer'}: {ref_host}",
            Severity.CRITICAL if blocked else Severity.WARNING,
        )
        await events.log(
            SecurityEventType.HOTLINK_DETECTED,
            severity=verdict.severity,
            details={"refererHost": ref_host, "reason": verdict.reason},
            **ctx,
        )
        return verdict

    rc = redis_wrapper.client

    # ── [Step 3] Velocity ──────────────────────────────────────────────────
    try:
        count, _ = await redis_wrapper.incr_window(
            FREQUENCY_KEY.format(session_id=session_id, video_id=video_id),
            policy.frequency_window_seconds,
        )
    except (RedisError, RuntimeError, OSError) as exc:
        inc_redis_error("hotlink")
        logger.warning("Hotlink velocity check skipped: %s", exc)
        count = 0

    if count and count % policy.frequency_log_every == 0:
        await events.log(
            SecurityEventType.SUSPICIOUS_ACTIVITY,
            severity=Severity.WARNING,
            details={"requestCount": count, "windowSeconds": policy.frequency_window_seconds},
            **ctx,
        )
    if count > policy.frequency_threshold:
        return HotlinkVerdict(True, f"Excessive request rate: {count}", Severity.WARNING)

    # ── [Step 4] Session fan-out across IPs ────────────────────────────────
    if policy.max_ips_per_session > 0 and ip != "unknown":
        key = SESSION_IPS_KEY.format(session_id=session_id)
        try:
            added = await rc.sadd(key, ip)
            await rc.expire(key, policy.ip_window_seconds)
            distinct = len(await rc.smembers(key) or ())
        except (RedisError, RuntimeError, OSError) as exc:
            inc_redis_error("hotlink")
            logger.warning("Hotlink fan-out check skipped: %s", exc)
            distinct, added = 0, 0

        if distinct > policy.max_ips_per_session:
            if added:
                await events.log(
                    SecurityEventType.SUSPICIOUS_ACTIVITY,
                    severity=Severity.WARNING,
                    details={"distinctIps": distinct, "sessionFingerprint": fingerprint(session_id)},
                    **ctx,
                )
            return HotlinkVerdict(True, f"Session used from {distinct} IPs", Severity.WARNING)

    return NOT_HOTLINKING


# ─────────────────────────────────────────────────────────────
# 🚫 Enforcement
# ─────────────────────────────────────────────────────────────
def should_block(verdict: HotlinkVerdict, mode: str) -> bool:
    return verdict.is_hotlinking and mode == "BLOCK_STRICT"


async def enforce_hotlink_policy(
    request: Request,
    session_id: str,
    video_id: str,
    project_id: str,
    *,
    policy: SecurityPolicy,
    events: SecurityEventLog,
    hotlink: Optional[HotlinkPolicy] = None,
) -> HotlinkVerdict:
    """Detect per the effective mode; raise an opaque 403 when the mode blocks."""
    mode = policy.hotlink_protection
    if mode == "DISABLED":
        return NOT_HOTLINKING

    verdict = await detect_hotlinking(request, session_id, video_id, project_id, events=events, policy=hotlink)
    if not verdict.is_hotlinking:
        return verdict

    severity = (verdict.severity or Severity.WARNING).value
    if should_block(verdict, mode):
        inc_hotlink(severity, "blocked")
        await events.log(
            SecurityEventType.HOTLINK_BLOCKED,
            severity=verdict.severity or Severity.WARNING,
            request=request,
            session_id=session_id,
            project_id=project_id,
            video_id=video_id,
            details={"reason": verdict.reason},
            was_blocked=True,
        )
        raise AccessDeniedException()

    inc_hotlink(severity, "logged")
    return verdict


__all__ = [
    "HotlinkPolicy",
    "HotlinkVerdict",
    "NOT_HOTLINKING",
    "detect_hotlinking",
    "should_block",
    "enforce_hotlink_policy",
]
