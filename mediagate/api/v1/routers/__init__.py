"""
🧭 MediaGate • API v1 Router Aggregator
======================================

Exports the **combined `router`** and each **individual sub-router** so callers
(and tests) can mount them as needed.

Layout
------
- `/content/...`                 → token-gated media bytes (no extra prefix)
- `/share/{project_id}/...`      → token issuance for share pages
- `/admin/...`                   → admin security operations (X-Admin-Key)

Quick usage
-----------
    from mediagate.api.v1.routers import router as api_router
    app.include_router(api_router, prefix=settings.API_PREFIX)

Security notes
--------------
- This layer is a pure aggregator; **auth & rate limits live in child routers**.
"""

from fastapi import APIRouter

from .admin_security import router as admin_security_router
from .content import router as content_router
from .share_tokens import router as share_tokens_router


# ─────────────────────────────────────────────────────────────────────────────
# 🧩 Factory: build a combined v1 router with stable path layout
# ─────────────────────────────────────────────────────────────────────────────
def build_v1_router() -> APIRouter:
    """Compose content, share-token and admin routers into a single `APIRouter`."""
    r = APIRouter()
    r.include_router(content_router)
    r.include_router(share_tokens_router)
    r.include_router(admin_security_router, prefix="/admin")
    return r


router = build_v1_router()


__all__ = [
    "router",
    "build_v1_router",
    "content_router",
    "share_tokens_router",
    "admin_security_router",
]
