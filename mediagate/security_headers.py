# mediagate/security_headers.py
from __future__ import annotations

"""
# MediaGate — Security Headers & CORS

Security headers and CORS utilities for FastAPI/Starlette.

## What you get
- **Headers**: HSTS, Referrer-Policy, X-Content-Type-Options, X-Frame-Options,
  CORP/COOP and X-Permitted-Cross-Domain-Policies, applied idempotently
  (a header already set by a route, e.g. `X-Frame-Options: SAMEORIGIN` on media
  responses, is never overwritten).
- **CORS installer**: strict allow-list from settings (localhost defaults in dev).

## Quick start
    from mediagate.security_headers import install_security, configure_cors

    app = FastAPI()
    install_security(app)
    configure_cors(app)

## Env knobs
- ENABLE_HTTPS_REDIRECT (default "false")
- SECURITY_SKIP_PATHS (CSV; default "/metrics,/docs,/openapi.json")
- HSTS_MAX_AGE (31536000), HSTS_INCLUDE_SUBDOMAINS ("true")
- REFERRER_POLICY (default "strict-origin-when-cross-origin")
- CROSS_ORIGIN_OPENER_POLICY / CROSS_ORIGIN_RESOURCE_POLICY
"""

import os
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from starlette.middleware.cors import CORSMiddleware
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware
from starlette.types import ASGIApp, Receive, Scope, Send

from mediagate.core.config import settings


# ─────────────────────────────────────────────────────────────
# ⚙️ Configuration
# ─────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class SecurityHeadersConfig:
    """Runtime configuration for security headers (env-driven)."""

    hsts_max_age: int = int(os.getenv("HSTS_MAX_AGE", "31536000"))
    hsts_include_subdomains: bool = os.getenv("HSTS_INCLUDE_SUBDOMAINS", "true").lower() == "true"
    referrer_policy: str = os.getenv("REFERRER_POLICY", "strict-origin-when-cross-origin")
    frame_options: str = os.getenv("X_FRAME_OPTIONS", "DENY")
    coop: str = os.getenv("CROSS_ORIGIN_OPENER_POLICY", "same-origin")
    # Media is embedded by same-site players; `same-origin` would break them
    corp: str = os.getenv("CROSS_ORIGIN_RESOURCE_POLICY", "same-site")
    skip_paths_csv: str = os.getenv("SECURITY_SKIP_PATHS", "/metrics,/docs,/openapi.json")


_CFG = SecurityHeadersConfig()


# ─────────────────────────────────────────────────────────────
# 🧩 Middleware
# ─────────────────────────────────────────────────────────────
class SecurityHeadersMiddleware:
    """ASGI middleware that applies security headers on every non-skipped response."""

    def __init__(self, app: ASGIApp, cfg: SecurityHeadersConfig = _CFG) -> None:
        self.app = app
        self.cfg = cfg
        self._skip_prefixes: Tuple[str, ...] = tuple(
            p.strip() for p in (cfg.skip_paths_csv or "").split(",") if p.strip()
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            return await self.app(scope, receive, send)

        path = scope.get("path", "")
        is_skipped = any(path.startswith(prefix) for prefix in self._skip_prefixes)

        async def send_wrapper(message):
            if message.get("type") == "http.response.start" and not is_skipped:
                raw_headers: List[Tuple[bytes, bytes]] = message.setdefault("headers", [])  # type: ignore[assignment]
                _apply_headers_to_raw(raw_headers, self.cfg)
            await send(message)

        await self.app(scope, receive, send_wrapper)


def _has_header(raw_headers: List[Tuple[bytes, bytes]], name: str) -> bool:
    lname = name.lower().encode("latin-1")
    return any(h[0].lower() == lname for h in raw_headers)


def _ensure_header(raw_headers: List[Tuple[bytes, bytes]], name: str, value: str) -> None:
    if not _has_header(raw_headers, name):
        raw_headers.append((name.encode("latin-1"), value.encode("latin-1")))


def _apply_headers_to_raw(raw_headers: List[Tuple[bytes, bytes]], cfg: SecurityHeadersConfig) -> None:
    """Append security headers idempotently to the ASGI raw header list."""
    hsts = f"max-age={cfg.hsts_max_age}"
    if cfg.hsts_include_subdomains:
        hsts += "; includeSubDomains"
    if settings.is_production:
        _ensure_header(raw_headers, "Strict-Transport-Security", hsts)
    _ensure_header(raw_headers, "X-Content-Type-Options", "nosniff")
    _ensure_header(raw_headers, "X-Frame-Options", cfg.frame_options)
    _ensure_header(raw_headers, "Referrer-Policy", cfg.referrer_policy)
    _ensure_header(raw_headers, "Cross-Origin-Opener-Policy", cfg.coop)
    _ensure_header(raw_headers, "Cross-Origin-Resource-Policy", cfg.corp)
    _ensure_header(raw_headers, "X-Permitted-Cross-Domain-Policies", "none")


# ─────────────────────────────────────────────────────────────
# 🔓 Installers
# ─────────────────────────────────────────────────────────────
def configure_cors(
    app,
    *,
    allow_credentials: bool = True,
    allow_methods: Optional[Iterable[str]] = None,
    allow_headers: Optional[Iterable[str]] = None,
) -> None:
    """Install strict CORS from settings (credentials on: share cookies ride along)."""
    allow_methods = allow_methods or ["GET", "HEAD", "OPTIONS", "POST", "DELETE"]
    allow_headers = allow_headers or ["Content-Type", "Range", "X-Request-ID", "X-Admin-Key"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.frontend_origins_list,
        allow_credentials=allow_credentials,
        allow_methods=list(allow_methods),
        allow_headers=list(allow_headers),
        expose_headers=["Accept-Ranges", "Content-Range", "Content-Length", "Retry-After", "X-Request-ID"],
        max_age=3600,
    )


def install_security(app) -> None:
    """Add HTTPS redirect (optional) and the security headers middleware."""
    if os.getenv("ENABLE_HTTPS_REDIRECT", "false").lower() == "true":
        app.add_middleware(HTTPSRedirectMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, cfg=_CFG)


__all__ = [
    "SecurityHeadersConfig",
    "SecurityHeadersMiddleware",
    "install_security",
    "configure_cors",
]
