from __future__ import annotations

"""
MediaGate — Coarse HTTP Rate Limiting (SlowAPI)
===============================================

Per-route limits for the *control* surface (token issuance, admin). The media
path itself is guarded by the two explicit Redis tiers in
`mediagate.services.rate_limit`, because video players legitimately fire
bursts of range requests that a generic per-route limit would starve.

Highlights
----------
- Per-client-IP keying (proxy aware through `get_client_ip`).
- Exemptions: metrics/docs/health checks and configurable trusted IPs.
- `RATE_LIMIT_ENABLED=false` turns decorators into no-ops (tests, local dev).

Environment
-----------
RATE_LIMIT_ENABLED           default: "true"
DEFAULT_RATE_LIMIT           default: "" (no global default; routes opt in)
RATELIMIT_STORAGE_URI        default: settings.REDIS_URL (falls back to "memory://")
RATELIMIT_STRATEGY           default: "fixed-window"
RATE_LIMIT_SKIP_PATHS        default: "/healthz,/readyz,/metrics,/docs,/openapi.json"
RATE_LIMIT_TRUSTED_IPS       default: "" (comma separated)

Usage
-----
    from mediagate.core.limiter import rate_limit

    @router.get("/share/{project_id}/video-token")
    @rate_limit("60/minute")
    async def issue(request: Request, ...): ...
"""

import os
from typing import Callable, List, Optional, Set

from dotenv import load_dotenv
from loguru import logger
from slowapi import Limiter
from slowapi.middleware import SlowAPIMiddleware
from starlette.requests import Request

from mediagate.api.http_utils import get_client_ip
from mediagate.core.config import settings

# ──────────────────────────────────────────────────────────────
# ⚙️ Environment & defaults
# ──────────────────────────────────────────────────────────────
load_dotenv()

RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
DEFAULT_LIMIT = os.getenv("DEFAULT_RATE_LIMIT", "").strip()
STORAGE_URI = os.getenv("RATELIMIT_STORAGE_URI", "").strip() or settings.REDIS_URL
STRATEGY = os.getenv("RATELIMIT_STRATEGY", "fixed-window").strip()

SKIP_PATHS: List[str] = [
    p.strip()
    for p in os.getenv("RATE_LIMIT_SKIP_PATHS", "/healthz,/readyz,/metrics,/docs,/openapi.json").split(",")
    if p.strip()
]
TRUSTED_IPS: Set[str] = {ip.strip() for ip in os.getenv("RATE_LIMIT_TRUSTED_IPS", "").split(",") if ip.strip()}


# ──────────────────────────────────────────────────────────────
# 🧠 Keying & exemptions
# ──────────────────────────────────────────────────────────────
def get_rate_limit_key(request: Request) -> str:
    return f"ip:{get_client_ip(request)}"


def should_exempt_request(request: Optional[Request]) -> bool:
    """Exempt when the path is in SKIP_PATHS or the client IP is trusted."""
    if request is None:
        return False
    try:
        path = request.url.path
        if any(path == p or path.startswith(p.rstrip("/") + "/") for p in SKIP_PATHS):
            return True
        if get_client_ip(request) in TRUSTED_IPS:
            return True
    except Exception as e:
        logger.warning(f"[RateLimit] exemption check failed; enforcing limits | err={e}")
    return False


# ──────────────────────────────────────────────────────────────
# 🧰 Limiter instance
# ──────────────────────────────────────────────────────────────
def _build_default_limits() -> List[str]:
    return [chunk.strip() for chunk in DEFAULT_LIMIT.split(",") if chunk.strip()]


def _make_limiter() -> Optional[Limiter]:
    if not RATE_LIMIT_ENABLED:
        logger.info("RateLimiter disabled by env")
        return None
    try:
        limiter = Limiter(
            key_func=get_rate_limit_key,
            default_limits=_build_default_limits(),
            headers_enabled=True,
            storage_uri=STORAGE_URI or "memory://",
            strategy=STRATEGY,
            key_prefix="mediagate",
        )
        logger.info(
            f"✅ RateLimiter ready | default={_build_default_limits()} | strategy={STRATEGY} | skip={SKIP_PATHS}"
        )
        return limiter
    except Exception as e:
        logger.error(f"❌ Failed to init Limiter; limits disabled | err={e}")
        return None


limiter: Optional[Limiter] = _make_limiter()


# ──────────────────────────────────────────────────────────────
# 🎛 Decorators
# ──────────────────────────────────────────────────────────────
def _exempt_when(request: Optional[Request] = None) -> bool:
    req = request
    if req is None and limiter is not None:
        try:
            req = limiter._request_context.get()  # type: ignore[attr-defined]
        except Exception:
            req = None
    return should_exempt_request(req)


def _noop(fn: Callable) -> Callable:
    return fn


def rate_limit(*limits: str) -> Callable:
    """
    Apply per-route limits.

    Examples
    --------
    @rate_limit("10/minute")
    @rate_limit("5/second", "100/minute")
    """
    if limiter is None:
        return _noop
    selected = list(limits) if limits else _build_default_limits()
    if not selected:
        return _noop

    def _apply(fn: Callable) -> Callable:
        for limit_value in reversed(selected):
            fn = limiter.limit(limit_value, exempt_when=_exempt_when)(fn)
        return fn

    return _apply


def rate_limit_exempt() -> Callable:
    """Explicitly exempt a route from limiting."""
    if limiter is None:
        return _noop
    return limiter.exempt


# ──────────────────────────────────────────────────────────────
# 🔧 Installer
# ──────────────────────────────────────────────────────────────
def install_rate_limiter(app) -> None:
    """Attach SlowAPI middleware and its 429 handler (no-op when disabled)."""
    if limiter is None:
        logger.info("RateLimiter not active; middleware not installed")
        return
    from slowapi import _rate_limit_exceeded_handler
    from slowapi.errors import RateLimitExceeded

    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    logger.info("✅ SlowAPI middleware installed")


__all__ = [
    "limiter",
    "rate_limit",
    "rate_limit_exempt",
    "install_rate_limiter",
    "should_exempt_request",
    "get_rate_limit_key",
]
