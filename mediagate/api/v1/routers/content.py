from __future__ import annotations

# ─────────────────────────────────────────────────────────────────────────────
# 🎞️ Content API (token-gated media bytes)
# ─────────────────────────────────────────────────────────────────────────────
"""
Token-gated media delivery.

Every request walks the same gates, cheapest first; any failure short-circuits
with an opaque denial and, where relevant, a security event:

    IP tier → token lookup → access check → session tier → token/session match
    → password gate → hotlink policy → media resolver → stat → stream

Authorization failures always answer "Access denied" (401/403) so the body is
not an oracle; the reason lives only in the security event log. Anything
unexpected (a database error while resolving the project, say) is logged as a
CRITICAL `STREAM_ERROR` and answered with 500 "Stream failed".
"""

import logging
import math
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request
from redis.exceptions import RedisError
from starlette.responses import Response

from mediagate.api.http_utils import build_content_disposition, get_client_ip, json_no_store, sanitize_filename
from mediagate.core.config import settings
from mediagate.core.dependencies import MediaGate, get_media_gate
from mediagate.core.exceptions import (
    AccessDeniedException,
    AppException,
    MediaNotFoundException,
    ServiceUnavailableException,
)
from mediagate.core.storage import StoragePathError
from mediagate.schemas.access import ArchivePendingOut, PhotoVariant
from mediagate.services.analytics import EVENT_DOWNLOAD_COMPLETE, EVENT_STREAM_RANGE
from mediagate.services.archives import archive_filename, archive_storage_path, enqueue_archive_generation
from mediagate.services.hotlink import enforce_hotlink_policy
from mediagate.services.media_resolver import download_filename, is_original, resolve_media_path
from mediagate.services.rate_limit import RateLimitRule, raise_for_denial, rate_limit
from mediagate.services.security_events import SecurityEventLog, SecurityEventType, Severity
from mediagate.services.sessions import Denied, check_access, password_gate_passed, session_scope
from mediagate.services.streaming import build_stream_response, guess_media_type
from mediagate.services.tokens import (
    get_photo_token,
    get_video_token,
    load_archive_token,
    token_fingerprint,
    verify_photo_token,
    verify_video_token,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Content"])
__all__ = ["router"]

IP_PURPOSE = "content-stream-ip"
SESSION_PURPOSE = "content-stream-session"
ARCHIVE_IP_PURPOSE = "archive-download-ip"
PHOTO_IP_PURPOSE = "photo-content-ip"
ARCHIVE_WINDOW_SECONDS = 60
PHOTO_WINDOW_SECONDS = 60

IP_TIER_MESSAGE = "Too many requests from your network. Please slow down and try again later."
SESSION_TIER_MESSAGE = "Video streaming rate limit exceeded. Please wait a moment."
ARCHIVE_TIER_MESSAGE = "Too many download requests. Please slow down."
PHOTO_TIER_MESSAGE = "Too many requests. Please slow down."

PHOTO_CACHE_DOWNLOAD = "private, no-store, must-revalidate"


# ─────────────────────────────────────────────────────────────────────────────
# ⚙️ Utilities
# ─────────────────────────────────────────────────────────────────────────────
async def _enforce_tier(
    request: Request,
    rule: RateLimitRule,
    purpose: str,
    identity: str,
    events: SecurityEventLog,
    *,
    session_id: Optional[str] = None,
    project_id: Optional[str] = None,
    video_id: Optional[str] = None,
) -> None:
    """Count one hit; on denial log RATE_LIMIT_HIT and raise 429."""
    denial = await rate_limit(request, rule, purpose, identity)
    if denial is not None:
        await events.log(
            SecurityEventType.RATE_LIMIT_HIT,
            severity=Severity.WARNING,
            request=request,
            session_id=session_id,
            project_id=project_id,
            video_id=video_id,
            details={"purpose": purpose, "limit": denial.limit, "count": denial.count},
            was_blocked=True,
        )
    raise_for_denial(denial)


async def _stream_failure(
    request: Request,
    events: SecurityEventLog,
    exc: BaseException,
    phase: str,
    ctx: Dict[str, Any],
) -> AppException:
    """Log an unexpected failure as STREAM_ERROR and return the 500 to raise."""
    logger.error("Content %s failed: %r", phase, exc, exc_info=exc)
    details = {"error": type(exc).__name__, "phase": phase}
    details.update(ctx.pop("details", None) or {})
    await events.log(
        SecurityEventType.STREAM_ERROR,
        severity=Severity.CRITICAL,
        request=request,
        details=details,
        **ctx,
    )
    return AppException(status_code=500, message="Stream failed")


def _store_unavailable(exc: BaseException) -> ServiceUnavailableException:
    logger.error("Token store unavailable: %s", exc)
    return ServiceUnavailableException("Token store unavailable")


def _stream_error_reporter(
    request: Request,
    events: SecurityEventLog,
    **ctx,
):
    """Callback for I/O failures after headers were sent (request scope is gone)."""
    detached = events.detached()
    ip = get_client_ip(request)

    async def _report(exc: BaseException) -> None:
        await detached.log(
            SecurityEventType.STREAM_ERROR,
            severity=Severity.CRITICAL,
            ip_address=ip,
            details={"error": type(exc).__name__, "phase": "transfer"},
            **ctx,
        )

    return _report


async def _stat_or_404(gate: MediaGate, path: str, message: str) -> int:
    try:
        size = await gate.storage.stat_file(path)
    except StoragePathError:
        logger.error("Refusing unsafe storage path on record: %r", path)
        raise MediaNotFoundException(message)
    if size is None:
        raise MediaNotFoundException(message)
    return size


# ╔════════════════════════════════ Route: Stream / Download Video ═══════════╗
# ║ 🎞️🔐  GET /content/{token}                                               ║
# ╚═══════════════════════════════════════════════════════════════════════════╝
@router.get(
    "/content/{token}",
    summary="Stream or download a video by access token",
    responses={
        200: {"description": "Full body (stream or attachment)"},
        206: {"description": "Partial content (Range)"},
        401: {"description": "Missing share session or password authentication"},
        403: {"description": "Access denied (token invalid/expired/foreign, hotlink blocked)"},
        404: {"description": "Video or preview not available"},
        416: {"description": "Range not satisfiable"},
        429: {"description": "Rate limited"},
        500: {"description": "Stream failed"},
        503: {"description": "Token store unavailable"},
    },
)
async def stream_content(
    request: Request,
    token: str = Path(..., max_length=256),
    download: bool = Query(False, description="Force attachment download"),
    gate: MediaGate = Depends(get_media_gate),
) -> Response:
    """
    Serve the bytes behind a video access token.

    Steps
    -----
    1) IP tier rate limit
    2) Token lookup (project scope for the session cookie)
    3) Access check (admin key / share session / guest)
    4) Session tier rate limit
    5) Token ↔ session binding
    6) Password gate
    7) Hotlink policy (non-admin)
    8) Resolve artifact, stat, build the streaming response
    9) Analytics (downloads and first range)
    """
    policy = gate.policy
    events = gate.events
    ip = get_client_ip(request)
    ctx: Dict[str, Any] = {}

    try:
        # ── [Step 1] IP tier ─────────────────────────────────────────────────
        await _enforce_tier(
            request,
            RateLimitRule(policy.rate_limit_window_seconds, policy.ip_rate_limit, IP_TIER_MESSAGE),
            IP_PURPOSE,
            f"ip:{ip}",
            events,
        )

        # ── [Step 2] Token lookup ────────────────────────────────────────────
        payload = await get_video_token(token)
        if payload is None:
            raise AccessDeniedException()
        ctx.update(project_id=payload.project_id, video_id=payload.video_id)

        project = await gate.repo.get_project(payload.project_id)
        if project is None:
            raise AccessDeniedException()

        # ── [Step 3] Access check ────────────────────────────────────────────
        check = check_access(request, project.id, guest_mode=bool(project.guest_mode))
        if isinstance(check, Denied):
            raise AccessDeniedException(status_code=check.status_code)
        scope = session_scope(check)
        if project.is_closed and not scope.is_admin:
            raise AccessDeniedException()
        ctx["session_id"] = scope.session_id

        # ── [Step 4] Session tier ────────────────────────────────────────────
        if not scope.is_admin:
            await _enforce_tier(
                request,
                RateLimitRule(policy.rate_limit_window_seconds, policy.session_rate_limit, SESSION_TIER_MESSAGE),
                SESSION_PURPOSE,
                f"session:{scope.session_id}",
                events,
                **ctx,
            )

        # ── [Step 5] Token ↔ session ─────────────────────────────────────────
        verified = await verify_video_token(
            token, request, scope.session_id, bypass_binding=scope.bypass_binding, events=events
        )
        if verified is None:
            raise AccessDeniedException()

        # ── [Step 6] Password gate ───────────────────────────────────────────
        if not password_gate_passed(check, request, project.id, requires_password=project.requires_password):
            raise AccessDeniedException(status_code=401)

        # ── [Step 7] Hotlink policy ──────────────────────────────────────────
        if not scope.is_admin:
            await enforce_hotlink_policy(
                request,
                scope.session_id,
                verified.video_id,
                project.id,
                policy=policy,
                events=events,
                hotlink=gate.hotlink,
            )
    except HTTPException:
        raise
    except (RedisError, RuntimeError) as exc:
        raise _store_unavailable(exc)
    except Exception as exc:
        raise await _stream_failure(request, events, exc, "gate", ctx)

    try:
        # ── [Step 8] Resolve + stat + respond ────────────────────────────────
        video = await gate.repo.get_video(verified.video_id)
        if video is None or video.project_id != verified.project_id:
            raise MediaNotFoundException("Video not found")

        path = resolve_media_path(video, verified.quality, is_admin=scope.is_admin)
        if not path:
            raise MediaNotFoundException("Preview not available")
        size = await _stat_or_404(gate, path, "Video file not found")

        disposition = None
        if download:
            disposition = build_content_disposition(
                download_filename(video, project, verified.quality, path), fallback="video.mp4"
            )

        response = build_stream_response(
            lambda start, end: gate.storage.open_read_stream(path, start, end, settings.STREAM_READ_BLOCK_BYTES),
            size=size,
            range_header=None if download else request.headers.get("range"),
            download=download,
            content_disposition=disposition,
            media_type=guess_media_type(path),
            on_error=_stream_error_reporter(request, events, **ctx),
        )

        # ── [Step 9] Analytics ───────────────────────────────────────────────
        content_range = response.headers.get("content-range") or ""
        event_type = None
        if download:
            event_type = EVENT_DOWNLOAD_COMPLETE
        elif content_range.startswith("bytes 0-"):
            event_type = EVENT_STREAM_RANGE
        if event_type:
            await gate.analytics.track_access(
                event_type,
                video_id=video.id,
                project_id=project.id,
                session_id=scope.session_id,
                token_fingerprint=token_fingerprint(token),
                quality="original" if is_original(video, path) else verified.quality,
                bandwidth=int(response.headers.get("content-length") or 0),
                is_admin=scope.is_admin,
            )
        return response
    except HTTPException:
        raise
    except Exception as exc:
        raise await _stream_failure(request, events, exc, "setup", ctx)


# ╔════════════════════════════════ Route: Album Photo ═══════════════════════╗
# ║ 🖼️🔐  GET /content/photo/{token}                                         ║
# ╚═══════════════════════════════════════════════════════════════════════════╝
@router.get(
    "/content/photo/{token}",
    summary="Serve an album photo by access token",
    responses={
        200: {"description": "Image body (inline or attachment)"},
        401: {"description": "Missing share session or password authentication"},
        403: {"description": "Access denied (token invalid/expired/foreign)"},
        404: {"description": "Photo not found or not ready"},
        409: {"description": "Social rendition not ready"},
        429: {"description": "Rate limited"},
        500: {"description": "Stream failed"},
        503: {"description": "Token store unavailable"},
    },
)
async def serve_photo(
    request: Request,
    token: str = Path(..., max_length=256),
    download: bool = Query(False, description="Force attachment download"),
    variant: PhotoVariant = Query("full"),
    gate: MediaGate = Depends(get_media_gate),
) -> Response:
    """
    Serve one album photo. Album grids request hundreds of these at once, so
    there is a single, generous IP tier and no hotlink heuristics; the
    per-photo session-bound token is the gate. Inline responses are cacheable
    (`private, immutable`); downloads are `no-store` and tracked.
    """
    events = gate.events
    ctx: Dict[str, Any] = {}

    try:
        await _enforce_tier(
            request,
            RateLimitRule(PHOTO_WINDOW_SECONDS, settings.PHOTO_IP_RATE_LIMIT, PHOTO_TIER_MESSAGE),
            PHOTO_IP_PURPOSE,
            f"ip:{get_client_ip(request)}",
            events,
        )

        payload = await get_photo_token(token)
        if payload is None:
            raise AccessDeniedException()
        ctx.update(project_id=payload.project_id, details={"photoId": payload.photo_id})

        project = await gate.repo.get_project(payload.project_id)
        if project is None:
            raise AccessDeniedException()

        check = check_access(request, project.id, guest_mode=bool(project.guest_mode))
        if isinstance(check, Denied):
            raise AccessDeniedException(status_code=check.status_code)
        scope = session_scope(check)
        if project.is_closed and not scope.is_admin:
            raise AccessDeniedException()
        ctx["session_id"] = scope.session_id

        verified = await verify_photo_token(
            token, request, scope.session_id, bypass_binding=scope.bypass_binding, events=events
        )
        if verified is None:
            raise AccessDeniedException()

        if not password_gate_passed(check, request, project.id, requires_password=project.requires_password):
            raise AccessDeniedException(status_code=401)
    except HTTPException:
        raise
    except (RedisError, RuntimeError) as exc:
        raise _store_unavailable(exc)
    except Exception as exc:
        raise await _stream_failure(request, events, exc, "gate", ctx)

    try:
        photo = await gate.repo.get_photo(verified.photo_id)
        album = await gate.repo.get_album(photo.album_id) if photo is not None else None
        if (
            photo is None
            or album is None
            or photo.album_id != verified.album_id
            or album.project_id != verified.project_id
        ):
            raise MediaNotFoundException("Photo not found")
        if not photo.is_ready:
            raise MediaNotFoundException("Photo not ready")

        path = photo.storage_path
        if variant == "social":
            if not photo.social_ready:
                raise AppException(status_code=409, message="Social photo not ready")
            path = photo.social_storage_path
        size = await _stat_or_404(gate, path, "Photo file not found")

        response = build_stream_response(
            lambda start, end: gate.storage.open_read_stream(path, start, end, settings.STREAM_READ_BLOCK_BYTES),
            size=size,
            download=download,
            content_disposition=(
                build_content_disposition(photo.file_name, fallback="photo.jpg") if download else None
            ),
            media_type=guess_media_type(photo.file_name, default="image/jpeg"),
            cache_control=(
                PHOTO_CACHE_DOWNLOAD if download else f"private, max-age={settings.PHOTO_CACHE_MAX_AGE}, immutable"
            ),
            accept_ranges=False,
            on_error=_stream_error_reporter(request, events, project_id=verified.project_id),
        )

        if download:
            await gate.analytics.track_photo_download(
                photo_id=photo.id,
                album_id=album.id,
                project_id=verified.project_id,
                variant=variant,
                session_id=scope.session_id,
                ip_address=get_client_ip(request),
                is_admin=scope.is_admin,
            )
        return response
    except HTTPException:
        raise
    except Exception as exc:
        raise await _stream_failure(request, events, exc, "setup", ctx)


# ╔════════════════════════════════ Route: Download Archive ══════════════════╗
# ║ 📦🔐  GET /content/archive/{token}                                       ║
# ╚═══════════════════════════════════════════════════════════════════════════╝
@router.get(
    "/content/archive/{token}",
    summary="Download a prebuilt archive (202 while it is generated)",
    responses={
        200: {"description": "application/zip attachment"},
        202: {"description": "Archive is being generated; retry after `retryAfterMs`"},
        403: {"description": "Invalid or expired download link"},
        429: {"description": "Rate limited"},
        500: {"description": "Stream failed"},
        503: {"description": "Token store unavailable"},
    },
)
async def download_archive(
    request: Request,
    token: str = Path(..., max_length=256),
    gate: MediaGate = Depends(get_media_gate),
) -> Response:
    """
    Stream an archive as a single attachment (`Accept-Ranges: none`; Range is ignored).

    A missing archive enqueues one generation job (guarded per job id) and
    answers 202 `{status: "generating", retryAfterMs}` so the client polls.
    """
    events = gate.events
    invalid = AppException(status_code=403, message="Invalid or expired download link")

    try:
        await _enforce_tier(
            request,
            RateLimitRule(ARCHIVE_WINDOW_SECONDS, settings.ARCHIVE_IP_RATE_LIMIT, ARCHIVE_TIER_MESSAGE),
            ARCHIVE_IP_PURPOSE,
            f"ip:{get_client_ip(request)}",
            events,
        )
        payload = await load_archive_token(token)
    except HTTPException:
        raise
    except (RedisError, RuntimeError) as exc:
        raise _store_unavailable(exc)
    if payload is None:
        raise invalid

    ctx: Dict[str, Any] = {"project_id": payload.project_id, "details": {"jobId": payload.job_id}}
    try:
        # ── Target must still belong to the token's project ─────────────────
        project = await gate.repo.get_project(payload.project_id)
        if project is None or project.is_closed:
            raise invalid
        if payload.kind == "video":
            target = await gate.repo.get_video(payload.target_id)
        else:
            target = await gate.repo.get_album(payload.target_id)
        if target is None or target.project_id != payload.project_id:
            raise invalid

        # ── Missing → enqueue once, ask the client to poll ───────────────────
        path = archive_storage_path(payload)
        try:
            size = await gate.storage.stat_file(path)
        except StoragePathError:
            raise invalid
        if size is None:
            await enqueue_archive_generation(payload)
            retry_ms = int(settings.ARCHIVE_RETRY_AFTER_MS)
            return json_no_store(
                ArchivePendingOut(retry_after_ms=retry_ms),
                status_code=202,
                headers={"Retry-After": str(max(1, math.ceil(retry_ms / 1000)))},
            )

        title = sanitize_filename(f"{project.title}_{target.name}", fallback=payload.target_id)
        return build_stream_response(
            lambda start, end: gate.storage.open_read_stream(path, start, end, settings.STREAM_READ_BLOCK_BYTES),
            size=size,
            download=True,
            content_disposition=build_content_disposition(archive_filename(payload, title), fallback="archive.zip"),
            media_type="application/zip",
            accept_ranges=False,
            on_error=_stream_error_reporter(request, events, project_id=payload.project_id),
        )
    except HTTPException:
        raise
    except Exception as exc:
        raise await _stream_failure(request, events, exc, "archive", ctx)
