from __future__ import annotations

"""
MediaGate · HTTP Utilities
==========================

Shared helpers for API routers:

- Client IP resolution (proxy-aware, opt-in)
- Admin key verification (constant-time)
- Opaque fingerprints for secrets that must never be logged
- Safe filename sanitization and RFC 5987 `Content-Disposition`
- No-store JSON helper

Notes
-----
• All helpers are side-effect free and fast; dependencies return on success or
  raise `HTTPException` on failure.
"""

import hashlib
import hmac
import ipaddress
import re
from typing import Any, Optional
from urllib.parse import quote

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

from mediagate.core.config import settings

__all__ = [
    "get_client_ip",
    "fingerprint",
    "admin_key_matches",
    "require_admin",
    "json_no_store",
    "sanitize_filename",
    "build_content_disposition",
]


# ─────────────────────────────────────────────────────────────────────────────
# 🌐 Client IP Resolution (proxy/CDN aware, opt-in)
# ─────────────────────────────────────────────────────────────────────────────
def _parse_ip(value: Optional[str]) -> Optional[str]:
    """Parse an IP (v4/v6) possibly containing zone IDs or ports; return None if invalid."""
    if not value:
        return None
    try:
        value = value.split("%", 1)[0].strip()
        if value.startswith("["):
            host = value.split("]", 1)[0].lstrip("[")
        else:
            # Split off port only for ipv4:port form (one ':')
            host = value.split(":")[0] if value.count(":") == 1 else value
        ipaddress.ip_address(host)
        return host
    except ValueError:
        return None


def get_client_ip(request: Request) -> str:
    """Best-guess client IP for rate limiting, hotlink checks and audit rows.

    By default uses the socket peer address. With ``TRUST_FORWARD_HEADERS``
    enabled it consults, in order, ``CF-Connecting-IP``, ``True-Client-IP``,
    ``X-Real-Ip`` and the first hop of ``X-Forwarded-For``.

    Returns ``"unknown"`` when nothing usable is present.
    """
    peer = request.client.host if request.client and request.client.host else None
    peer_ip = _parse_ip(peer)

    if not settings.TRUST_FORWARD_HEADERS:
        return peer_ip or "unknown"

    for hdr in ("cf-connecting-ip", "true-client-ip", "x-real-ip"):
        ip = _parse_ip(request.headers.get(hdr))
        if ip:
            return ip

    xff = request.headers.get("x-forwarded-for")
    if xff:
        ip = _parse_ip(xff.split(",")[0].strip())
        if ip:
            return ip

    return peer_ip or "unknown"


# ─────────────────────────────────────────────────────────────────────────────
# 🔑 Secrets: constant-time compare & fingerprints
# ─────────────────────────────────────────────────────────────────────────────
def _compare_ct(a: str, b: str) -> bool:
    """Constant-time string comparison to resist timing attacks."""
    return hmac.compare_digest(str(a), str(b))


def fingerprint(value: str, length: int = 12) -> str:
    """Short SHA-256 prefix used wherever a secret has to be referenced in logs."""
    return hashlib.sha256(str(value).encode("utf-8")).hexdigest()[:length]


def admin_key_matches(request: Request) -> bool:
    """True when ``X-Admin-Key`` matches ``ADMIN_API_KEY`` (never when unset)."""
    admin_key = settings.admin_api_key
    if not admin_key:
        return False
    provided = request.headers.get("x-admin-key")
    return bool(provided) and _compare_ct(provided, admin_key)


def require_admin(request: Request) -> None:
    """Dependency: require a valid ``X-Admin-Key``.

    Raises
    ------
    HTTPException
        403 when the admin surface is disabled (no key configured),
        401 when the key is missing or wrong.
    """
    if not settings.admin_api_key:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin API disabled")
    if not admin_key_matches(request):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing admin key")


# ─────────────────────────────────────────────────────────────────────────────
# 🧳 No-store JSON helper (token-bearing responses)
# ─────────────────────────────────────────────────────────────────────────────
def json_no_store(payload: Any, status_code: int = 200, *, headers: Optional[dict] = None) -> JSONResponse:
    """Return a JSON response with strict `no-store` caching."""
    if hasattr(payload, "model_dump"):
        payload = payload.model_dump(by_alias=True)
    resp = JSONResponse(content=payload, status_code=status_code, headers=headers)
    resp.headers["Cache-Control"] = "no-store"
    resp.headers["Pragma"] = "no-cache"
    resp.headers["Expires"] = "0"
    return resp


# ─────────────────────────────────────────────────────────────────────────────
# 📦 Safe filename for Content-Disposition
# ─────────────────────────────────────────────────────────────────────────────
def sanitize_filename(name: Optional[str], fallback: str = "download.bin") -> str:
    """Return a safe filename limited to ``[A-Za-z0-9._-]`` and underscores for spaces.

    Examples
    --------
    >>> sanitize_filename("  My File (Final).mp4  ")
    'My_File_Final.mp4'
    >>> sanitize_filename("", fallback="file.bin")
    'file.bin'
    """
    s = (name or "").strip()
    if not s:
        return fallback
    s = re.sub(r"\s+", "_", s)
    s = re.sub(r"[^A-Za-z0-9._-]", "", s)
    return s or fallback


def build_content_disposition(filename: Optional[str], *, fallback: str = "download.bin") -> str:
    """Return an attachment disposition with RFC 5987 ``filename*`` for non-ASCII names."""
    safe = sanitize_filename(filename, fallback=fallback)
    cd = f'attachment; filename="{safe}"'
    if filename and any(ord(c) > 127 for c in filename):
        cd += f"; filename*=UTF-8''{quote(filename, encoding='utf-8', safe='')}"
    return cd
