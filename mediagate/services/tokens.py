# mediagate/services/tokens.py
from __future__ import annotations

"""
MediaGate — Ephemeral access tokens (Redis-backed)
==================================================

Video tokens
------------
- Opaque: 16 random bytes, base64url (`secrets.token_urlsafe(16)`).
- Stored at `video_access:{token}` as JSON with a TTL (VIDEO_TOKEN_TTL_SECONDS).
- **Reuse**: `video_token_cache:{session}:{video}:{quality}` points at the last
  token issued for that triple; it is returned while the token itself is alive.
- **Session binding**: verification requires the caller's session to equal the
  token's. A token minted without a session binds lazily to the first verifier
  (a `SET NX` claim key makes the first binder win under concurrency).
- Admins verify with `bypass_binding=True`.

Archive tokens
--------------
- Stored at `zip_download:{token}`; they carry the archive target, the asset ids
  and the variant. Single-use is *not* enforced: polling while the archive is
  generated reuses the same token until it expires.

Photo tokens
------------
- Stored at `photo_access:{token}` (PHOTO_TOKEN_TTL_SECONDS) with the photo,
  album, project and the issuing session; always session-bound at issue time.
- Reuse: `photo_token_cache:{session}:{photo}`, so album grids re-rendering
  the same thumbnails keep stable URLs (and browser cache hits).
- The issuing IP is recorded but not enforced; mobile clients hop networks.

Security
--------
- Tokens never appear in logs, metrics or events; only `token_fingerprint()` does.
- Mismatches are reported to the security event log (WARNING).
"""

import hmac
import logging
import re
import secrets
import time
from typing import List, Optional

from fastapi import Request
from pydantic import ValidationError

from mediagate.api.http_utils import fingerprint
from mediagate.core.config import settings
from mediagate.core.metrics import inc_token_issued, inc_token_verified
from mediagate.core.redis_client import redis_wrapper
from mediagate.schemas.access import AccessTokenPayload, ArchiveTokenPayload, PhotoTokenPayload
from mediagate.services.security_events import SecurityEventLog, SecurityEventType, Severity

logger = logging.getLogger(__name__)

VIDEO_TOKEN_PREFIX = "video_access:"
TOKEN_CACHE_PREFIX = "video_token_cache:"
BIND_SUFFIX = ":bound"
ARCHIVE_TOKEN_PREFIX = "zip_download:"
PHOTO_TOKEN_PREFIX = "photo_access:"
PHOTO_TOKEN_CACHE_PREFIX = "photo_token_cache:"

_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]{16,64}$")


def generate_token() -> str:
    return secrets.token_urlsafe(16)


def token_fingerprint(token: str) -> str:
    return fingerprint(token)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _well_formed(token: Optional[str]) -> bool:
    return bool(token) and bool(_TOKEN_RE.match(token))


# ─────────────────────────────────────────────────────────────
# 🎞️ Video tokens
# ─────────────────────────────────────────────────────────────
async def issue_video_token(
    *,
    video_id: str,
    project_id: str,
    quality: str,
    session_id: str,
    ip_address: Optional[str] = None,
    ttl_seconds: Optional[int] = None,
) -> str:
    """
    Return a live token for ``(session, video, quality)``; mint one when needed.

    Steps
    -----
    1) Reuse the cached token while its `video_access:*` entry still exists.
    2) Mint a fresh token and store its payload with the TTL.
    3) Point the reuse cache at it with the same TTL.
    """
    ttl = int(ttl_seconds or settings.VIDEO_TOKEN_TTL_SECONDS)
    rc = redis_wrapper.client
    cache_key = f"{TOKEN_CACHE_PREFIX}{session_id}:{video_id}:{quality}"

    # ── [Step 1] Reuse ─────────────────────────────────────────────────────
    cached = await rc.get(cache_key)
    if cached and await rc.exists(f"{VIDEO_TOKEN_PREFIX}{cached}"):
        inc_token_issued("video_reused")
        return cached

    # ── [Step 2] Mint ──────────────────────────────────────────────────────
    token = generate_token()
    payload = AccessTokenPayload(
        video_id=video_id,
        project_id=project_id,
        quality=quality,
        session_id=session_id or "",
        ip_address=ip_address,
        issued_at=_now_ms(),
    )
    await redis_wrapper.json_set(f"{VIDEO_TOKEN_PREFIX}{token}", payload.model_dump(by_alias=True), ttl_seconds=ttl)

    # ── [Step 3] Reuse pointer ─────────────────────────────────────────────
    if session_id:
        await rc.set(cache_key, token, ex=ttl)

    inc_token_issued("video")
    logger.info("Issued video token fp=%s video=%s quality=%s", token_fingerprint(token), video_id, quality)
    return token


async def get_video_token(token: str) -> Optional[AccessTokenPayload]:
    """Payload for `token`, or None when unknown/expired/corrupt."""
    if not _well_formed(token):
        return None
    raw = await redis_wrapper.json_get(f"{VIDEO_TOKEN_PREFIX}{token}")
    if not isinstance(raw, dict):
        return None
    try:
        return AccessTokenPayload.model_validate(raw)
    except ValidationError:
        logger.warning("Corrupt video token payload fp=%s", token_fingerprint(token))
        return None


async def _bind_session(token: str, payload: AccessTokenPayload, session_id: str) -> Optional[AccessTokenPayload]:
    """Claim an unbound token for `session_id`. Returns the bound payload, or None if another session won."""
    rc = redis_wrapper.client
    key = f"{VIDEO_TOKEN_PREFIX}{token}"
    ttl = await rc.ttl(key)
    try:
        ttl = int(ttl)
    except (TypeError, ValueError):
        ttl = -1
    if ttl <= 0:
        ttl = int(settings.VIDEO_TOKEN_TTL_SECONDS)

    claimed = await rc.set(f"{key}{BIND_SUFFIX}", session_id, nx=True, ex=ttl)
    if not claimed:
        winner = await rc.get(f"{key}{BIND_SUFFIX}")
        if winner and hmac.compare_digest(str(winner), session_id):
            return payload.model_copy(update={"session_id": session_id})
        return None

    bound = payload.model_copy(update={"session_id": session_id})
    await redis_wrapper.json_set(key, bound.model_dump(by_alias=True), ttl_seconds=ttl)
    return bound


async def verify_video_token(
    token: str,
    request: Optional[Request],
    session_id: str,
    *,
    bypass_binding: bool = False,
    events: Optional[SecurityEventLog] = None,
) -> Optional[AccessTokenPayload]:
    """
    Resolve `token` for the caller's session.

    Returns the payload on success; None when the token is unknown, expired or
    bound to a different session (the latter is logged as TOKEN_SESSION_MISMATCH).
    """
    payload = await get_video_token(token)
    if payload is None:
        inc_token_verified("miss")
        return None

    if bypass_binding:
        inc_token_verified("admin")
        return payload

    if not payload.session_id:
        bound = await _bind_session(token, payload, session_id)
        if bound is not None:
            inc_token_verified("bound")
            return bound
        expected = await redis_wrapper.client.get(f"{VIDEO_TOKEN_PREFIX}{token}{BIND_SUFFIX}")
    else:
        if hmac.compare_digest(payload.session_id, session_id):
            inc_token_verified("ok")
            return payload
        expected = payload.session_id

    inc_token_verified("session_mismatch")
    await _report_mismatch(
        events,
        request,
        token,
        session_id,
        expected,
        project_id=payload.project_id,
        video_id=payload.video_id,
    )
    return None


async def _report_mismatch(
    events: Optional[SecurityEventLog],
    request: Optional[Request],
    token: str,
    session_id: str,
    expected: Optional[str],
    *,
    project_id: str,
    video_id: Optional[str] = None,
    extra: Optional[dict] = None,
) -> None:
    if events is None:
        return
    details = {
        "tokenFingerprint": token_fingerprint(token),
        "expectedSession": fingerprint(expected) if expected else None,
        "actualSession": fingerprint(session_id) if session_id else None,
    }
    details.update(extra or {})
    await events.log(
        SecurityEventType.TOKEN_SESSION_MISMATCH,
        severity=Severity.WARNING,
        request=request,
        session_id=session_id,
        project_id=project_id,
        video_id=video_id,
        details=details,
        was_blocked=True,
    )


async def revoke_project_video_tokens(project_id: str) -> int:
    """Delete every video token for `project_id` (plus unreadable entries). Returns the count."""
    rc = redis_wrapper.client
    revoked = 0
    doomed: List[str] = []
    async for key in rc.scan_iter(match=f"{VIDEO_TOKEN_PREFIX}*", count=500):
        if isinstance(key, (bytes, bytearray)):
            key = key.decode("utf-8", errors="replace")
        if key.endswith(BIND_SUFFIX):
            continue
        raw = await redis_wrapper.json_get(key)
        if isinstance(raw, dict) and raw.get("projectId") != project_id:
            continue
        doomed.append(key)

    for key in doomed:
        await rc.delete(key, f"{key}{BIND_SUFFIX}")
        revoked += 1

    logger.info("Revoked %s video token(s) for project=%s", revoked, project_id)
    return revoked


# ─────────────────────────────────────────────────────────────
# 📦 Archive tokens
# ─────────────────────────────────────────────────────────────
async def issue_archive_token(
    *,
    project_id: str,
    kind: str,
    target_id: str,
    asset_ids: List[str],
    variant: str = "full",
    session_id: str = "",
    ttl_seconds: Optional[int] = None,
) -> str:
    ttl = int(ttl_seconds or settings.ARCHIVE_TOKEN_TTL_SECONDS)
    token = generate_token()
    payload = ArchiveTokenPayload(
        project_id=project_id,
        kind=kind,
        target_id=target_id,
        asset_ids=list(asset_ids),
        variant=variant,
        session_id=session_id,
        issued_at=_now_ms(),
    )
    await redis_wrapper.json_set(f"{ARCHIVE_TOKEN_PREFIX}{token}", payload.model_dump(by_alias=True), ttl_seconds=ttl)
    inc_token_issued("archive")
    logger.info("Issued archive token fp=%s job=%s", token_fingerprint(token), payload.job_id)
    return token


async def load_archive_token(token: str) -> Optional[ArchiveTokenPayload]:
    if not _well_formed(token):
        return None
    raw = await redis_wrapper.json_get(f"{ARCHIVE_TOKEN_PREFIX}{token}")
    if not isinstance(raw, dict):
        return None
    try:
        return ArchiveTokenPayload.model_validate(raw)
    except ValidationError:
        logger.warning("Corrupt archive token payload fp=%s", token_fingerprint(token))
        return None


# ─────────────────────────────────────────────────────────────
# 🖼️ Photo tokens
# ─────────────────────────────────────────────────────────────
async def issue_photo_token(
    *,
    photo_id: str,
    album_id: str,
    project_id: str,
    session_id: str,
    ip_address: Optional[str] = None,
    ttl_seconds: Optional[int] = None,
) -> str:
    """Return a live token for ``(session, photo)``, minting one when the cached token is gone."""
    if not session_id:
        raise ValueError("Photo tokens require a session")
    ttl = int(ttl_seconds or settings.PHOTO_TOKEN_TTL_SECONDS)
    rc = redis_wrapper.client
    cache_key = f"{PHOTO_TOKEN_CACHE_PREFIX}{session_id}:{photo_id}"

    cached = await rc.get(cache_key)
    if cached and await rc.exists(f"{PHOTO_TOKEN_PREFIX}{cached}"):
        inc_token_issued("photo_reused")
        return cached

    token = generate_token()
    payload = PhotoTokenPayload(
        photo_id=photo_id,
        album_id=album_id,
        project_id=project_id,
        session_id=session_id,
        ip_address=ip_address,
        issued_at=_now_ms(),
    )
    await redis_wrapper.json_set(f"{PHOTO_TOKEN_PREFIX}{token}", payload.model_dump(by_alias=True), ttl_seconds=ttl)
    await rc.set(cache_key, token, ex=ttl)

    inc_token_issued("photo")
    logger.debug("Issued photo token fp=%s photo=%s", token_fingerprint(token), photo_id)
    return token


async def get_photo_token(token: str) -> Optional[PhotoTokenPayload]:
    if not _well_formed(token):
        return None
    raw = await redis_wrapper.json_get(f"{PHOTO_TOKEN_PREFIX}{token}")
    if not isinstance(raw, dict):
        return None
    try:
        return PhotoTokenPayload.model_validate(raw)
    except ValidationError:
        logger.warning("Corrupt photo token payload fp=%s", token_fingerprint(token))
        return None


async def verify_photo_token(
    token: str,
    request: Optional[Request],
    session_id: str,
    *,
    bypass_binding: bool = False,
    events: Optional[SecurityEventLog] = None,
) -> Optional[PhotoTokenPayload]:
    """Payload when `token` is live and was issued to `session_id` (admins skip the binding)."""
    payload = await get_photo_token(token)
    if payload is None:
        inc_token_verified("miss")
        return None
    if bypass_binding:
        inc_token_verified("admin")
        return payload
    if session_id and hmac.compare_digest(payload.session_id, session_id):
        inc_token_verified("ok")
        return payload

    inc_token_verified("session_mismatch")
    await _report_mismatch(
        events,
        request,
        token,
        session_id,
        payload.session_id,
        project_id=payload.project_id,
        extra={"photoId": payload.photo_id, "albumId": payload.album_id},
    )
    return None


__all__ = [
    "generate_token",
    "token_fingerprint",
    "issue_video_token",
    "get_video_token",
    "verify_video_token",
    "revoke_project_video_tokens",
    "issue_archive_token",
    "load_archive_token",
    "issue_photo_token",
    "get_photo_token",
    "verify_photo_token",
    "VIDEO_TOKEN_PREFIX",
    "TOKEN_CACHE_PREFIX",
    "ARCHIVE_TOKEN_PREFIX",
    "PHOTO_TOKEN_PREFIX",
    "PHOTO_TOKEN_CACHE_PREFIX",
]
