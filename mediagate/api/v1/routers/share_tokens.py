from __future__ import annotations

# ─────────────────────────────────────────────────────────────────────────────
# 🪙 Share Token Issuance (video + photo + archive)
# ─────────────────────────────────────────────────────────────────────────────
"""
Issue short-lived, session-bound tokens for a share page.

The share page calls these endpoints after its own authorization; the returned
token is embedded in `/content/{token}` URLs. Responses are `no-store`.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Path, Query, Request
from redis.exceptions import RedisError
from starlette.responses import Response

from mediagate.api.http_utils import get_client_ip, json_no_store
from mediagate.core.config import settings
from mediagate.core.dependencies import MediaGate, get_media_gate
from mediagate.core.exceptions import (
    AccessDeniedException,
    AppException,
    MediaNotFoundException,
    ServiceUnavailableException,
)
from mediagate.core.limiter import rate_limit
from mediagate.db.models.project import Project
from mediagate.schemas.access import ArchiveTokenIn, ArchiveTokenOut, PhotoTokenOut, VideoQuality, VideoTokenOut
from mediagate.services.sessions import Denied, SessionScope, check_access, password_gate_passed, session_scope
from mediagate.services.tokens import issue_archive_token, issue_photo_token, issue_video_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Share Tokens"])
__all__ = ["router"]


async def _authorize(request: Request, gate: MediaGate, project_id: str) -> tuple[Project, SessionScope]:
    """Project must exist and be open; caller must pass the access check and password gate."""
    project = await gate.repo.get_project(project_id)
    if project is None:
        raise MediaNotFoundException("Project not found")

    check = check_access(request, project.id, guest_mode=bool(project.guest_mode))
    if isinstance(check, Denied):
        raise AccessDeniedException(status_code=check.status_code)
    scope = session_scope(check)
    if project.is_closed and not scope.is_admin:
        raise AccessDeniedException()
    if not password_gate_passed(check, request, project.id, requires_password=project.requires_password):
        raise AccessDeniedException(status_code=401)
    return project, scope


# ╔════════════════════════════════ Route: Issue Video Token ═════════════════╗
# ║ 🎟️🔐  GET /share/{project_id}/video-token                                ║
# ╚═══════════════════════════════════════════════════════════════════════════╝
@router.get(
    "/share/{project_id}/video-token",
    summary="Issue a session-bound video access token",
    response_model=VideoTokenOut,
    responses={
        200: {"description": "Token issued (or reused)"},
        401: {"description": "Missing share session or password authentication"},
        403: {"description": "Access denied"},
        404: {"description": "Project or video not found"},
        503: {"description": "Token store unavailable"},
    },
)
@rate_limit("120/minute")
async def issue_video_access_token(
    request: Request,
    project_id: str = Path(..., max_length=64),
    video_id: str = Query(..., alias="videoId", max_length=64),
    quality: VideoQuality = Query("720p"),
    gate: MediaGate = Depends(get_media_gate),
) -> Response:
    """
    Steps
    -----
    1) Authorize the caller for the project
    2) Video must belong to the project; `original` needs approval (or admin)
    3) Issue (or reuse) the token for this session/video/quality
    """
    project, scope = await _authorize(request, gate, project_id)

    video = await gate.repo.get_video(video_id)
    if video is None or video.project_id != project.id:
        raise MediaNotFoundException("Video not found")
    if quality == "original" and not video.approved and not scope.is_admin:
        raise AccessDeniedException()

    try:
        token = await issue_video_token(
            video_id=video.id,
            project_id=project.id,
            quality=quality,
            session_id=scope.session_id,
            ip_address=get_client_ip(request),
        )
    except (RedisError, RuntimeError) as exc:
        logger.error("Token store unavailable: %s", exc)
        raise ServiceUnavailableException("Token store unavailable")

    return json_no_store(VideoTokenOut(token=token))


# ╔════════════════════════════════ Route: Issue Photo Token ═════════════════╗
# ║ 🖼️🎟️  GET /share/{project_id}/photo-token                                ║
# ╚═══════════════════════════════════════════════════════════════════════════╝
@router.get(
    "/share/{project_id}/photo-token",
    summary="Issue a session-bound photo access token",
    response_model=PhotoTokenOut,
    responses={
        200: {"description": "Token issued (or reused)"},
        401: {"description": "Missing share session or password authentication"},
        403: {"description": "Access denied"},
        404: {"description": "Project or photo not found"},
        503: {"description": "Token store unavailable"},
    },
)
@rate_limit("600/minute")
async def issue_photo_access_token(
    request: Request,
    project_id: str = Path(..., max_length=64),
    photo_id: str = Query(..., alias="photoId", max_length=64),
    gate: MediaGate = Depends(get_media_gate),
) -> Response:
    """Token for one album photo; album grids call this once per thumbnail."""
    project, scope = await _authorize(request, gate, project_id)

    photo = await gate.repo.get_photo(photo_id)
    album = await gate.repo.get_album(photo.album_id) if photo is not None else None
    if photo is None or album is None or album.project_id != project.id:
        raise MediaNotFoundException("Photo not found")

    try:
        token = await issue_photo_token(
            photo_id=photo.id,
            album_id=album.id,
            project_id=project.id,
            session_id=scope.session_id,
            ip_address=get_client_ip(request),
        )
    except (RedisError, RuntimeError) as exc:
        logger.error("Token store unavailable: %s", exc)
        raise ServiceUnavailableException("Token store unavailable")

    return json_no_store(PhotoTokenOut(token=token))


# ╔════════════════════════════════ Route: Issue Archive Token ═══════════════╗
# ║ 📦🎟️  POST /share/{project_id}/archive-token                             ║
# ╚═══════════════════════════════════════════════════════════════════════════╝
@router.post(
    "/share/{project_id}/archive-token",
    summary="Issue an archive download token for a video or an album",
    response_model=ArchiveTokenOut,
    responses={
        200: {"description": "Token issued"},
        400: {"description": "Exactly one of videoId or albumId is required, or unknown assetIds"},
        401: {"description": "Missing share session or password authentication"},
        403: {"description": "Access denied"},
        404: {"description": "Project, video or album not found"},
        503: {"description": "Token store unavailable"},
    },
)
@rate_limit("30/minute")
async def issue_archive_access_token(
    request: Request,
    project_id: str = Path(..., max_length=64),
    payload: ArchiveTokenIn = Body(...),
    gate: MediaGate = Depends(get_media_gate),
) -> Response:
    """
    Archive of a video's assets (approved videos only, unless admin) or of an album.

    `assetIds` narrows the archive to a subset of the target's assets (empty
    means all of them). Ids must belong to the target; they are stored sorted
    and de-duplicated so equal selections share one archive job.
    """
    project, scope = await _authorize(request, gate, project_id)

    if bool(payload.video_id) == bool(payload.album_id):
        raise AppException(status_code=400, message="Provide exactly one of videoId or albumId")

    kind: str
    target_id: Optional[str]
    if payload.video_id:
        video = await gate.repo.get_video(payload.video_id)
        if video is None or video.project_id != project.id:
            raise MediaNotFoundException("Video not found")
        if not video.approved and not scope.is_admin:
            raise AccessDeniedException()
        kind, target_id = "video", video.id
    else:
        album = await gate.repo.get_album(payload.album_id)
        if album is None or album.project_id != project.id:
            raise MediaNotFoundException("Album not found")
        kind, target_id = "album", album.id

    selection = sorted(set(payload.asset_ids))
    if selection:
        if kind == "video":
            known = await gate.repo.get_video_asset_ids(target_id)
        else:
            known = await gate.repo.get_album_photo_ids(target_id)
        if not set(selection) <= known:
            raise AppException(status_code=400, message="Unknown asset ids")

    try:
        token = await issue_archive_token(
            project_id=project.id,
            kind=kind,
            target_id=target_id,
            asset_ids=selection,
            variant=payload.variant,
            session_id=scope.session_id,
        )
    except (RedisError, RuntimeError) as exc:
        logger.error("Token store unavailable: %s", exc)
        raise ServiceUnavailableException("Token store unavailable")

    return json_no_store(ArchiveTokenOut(token=token, expires_in=settings.ARCHIVE_TOKEN_TTL_SECONDS))
