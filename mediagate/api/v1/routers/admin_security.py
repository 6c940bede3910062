from __future__ import annotations

"""
🛡️ Admin • Media security operations
====================================

- Revoke every live video token of a project (e.g. after a leaked link).
- Read the newest security events from the Redis ring (dashboard feed).

All routes require `X-Admin-Key`; responses are `no-store`.
"""

import logging

from fastapi import APIRouter, Depends, Path, Query, Request
from redis.exceptions import RedisError
from starlette.responses import Response

from mediagate.api.http_utils import json_no_store, require_admin
from mediagate.core.exceptions import ServiceUnavailableException
from mediagate.core.limiter import rate_limit
from mediagate.services.security_events import recent_security_events
from mediagate.services.tokens import revoke_project_video_tokens

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Admin • Security"], dependencies=[Depends(require_admin)])
__all__ = ["router"]


# ╔════════════════════════════════ Route: Revoke Project Tokens ═════════════╗
# ║ 🧹🔑  DELETE /admin/projects/{project_id}/video-tokens                    ║
# ╚═══════════════════════════════════════════════════════════════════════════╝
@router.delete(
    "/projects/{project_id}/video-tokens",
    summary="Revoke all live video tokens of a project",
    responses={
        200: {"description": "`{revoked}` count"},
        401: {"description": "Invalid or missing admin key"},
        403: {"description": "Admin API disabled"},
        503: {"description": "Token store unavailable"},
    },
)
@rate_limit("10/minute")
async def revoke_video_tokens(request: Request, project_id: str = Path(..., max_length=64)) -> Response:
    try:
        revoked = await revoke_project_video_tokens(project_id)
    except (RedisError, RuntimeError) as exc:
        logger.error("Token store unavailable: %s", exc)
        raise ServiceUnavailableException("Token store unavailable")
    logger.warning("Admin revoked %s video token(s) for project=%s", revoked, project_id)
    return json_no_store({"revoked": revoked})


# ╔════════════════════════════════ Route: Recent Security Events ════════════╗
# ║ 📜🔑  GET /admin/security/events/recent                                   ║
# ╚═══════════════════════════════════════════════════════════════════════════╝
@router.get(
    "/security/events/recent",
    summary="Newest security events (most recent first)",
    responses={
        200: {"description": "`{events: [...]}`"},
        401: {"description": "Invalid or missing admin key"},
        403: {"description": "Admin API disabled"},
    },
)
@rate_limit("60/minute")
async def list_recent_security_events(
    request: Request,
    limit: int = Query(100, ge=1, le=1000),
) -> Response:
    try:
        events = await recent_security_events(limit)
    except (RedisError, RuntimeError) as exc:
        logger.error("Security event ring unavailable: %s", exc)
        raise ServiceUnavailableException("Security event feed unavailable")
    return json_no_store({"events": events, "count": len(events)})
