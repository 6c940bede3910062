# mediagate/services/archives.py
from __future__ import annotations

"""
MediaGate — On-demand archives (zip) generation queue
=====================================================

An archive lives at `archives/{project}/{jobId}.zip`, where the job id is
`{kind}-{target}-{variant}` plus, for a partial selection, a 12-hex digest of
the sorted asset ids. Different selections of one target are different
archives and different jobs. When it is missing, the content route enqueues
one generation job and answers 202 so the client can poll.

Exactly-once enqueue
--------------------
`archive_job:{job_id}` is claimed with `SET NX EX ARCHIVE_GENERATION_DELAY_SECONDS`
before pushing. Concurrent polls for the same job race on the claim; only the
winner pushes. After the guard expires a still-missing archive may be enqueued
again (the worker died or is slow); the worker dedupes by `jobId`.

Queue envelope (JSON, RPUSH onto ARCHIVE_QUEUE_KEY)
---------------------------------------------------
    {"jobId", "kind", "projectId", "targetId", "assetIds", "variant", "runAt"}
"""

import json
import logging
import time

from redis.exceptions import RedisError

from mediagate.core.config import settings
from mediagate.core.metrics import inc_archive_enqueue
from mediagate.core.redis_client import redis_wrapper
from mediagate.core.storage import ARCHIVE_PATH_TEMPLATE
from mediagate.schemas.access import ArchiveTokenPayload

logger = logging.getLogger(__name__)

JOB_GUARD_PREFIX = "archive_job:"


def archive_storage_path(payload: ArchiveTokenPayload) -> str:
    return ARCHIVE_PATH_TEMPLATE.format(project_id=payload.project_id, job_id=payload.job_id)


def archive_filename(payload: ArchiveTokenPayload, title: str = "") -> str:
    base = title or payload.target_id
    suffix = "" if payload.variant == "full" else f"_{payload.variant}"
    return f"{base}{suffix}.zip"


async def enqueue_archive_generation(payload: ArchiveTokenPayload) -> bool:
    """Push one generation job unless one was pushed within the guard window. Returns True when pushed."""
    rc = redis_wrapper.client
    job_id = payload.job_id
    try:
        claimed = await rc.set(
            f"{JOB_GUARD_PREFIX}{job_id}",
            str(int(time.time() * 1000)),
            nx=True,
            ex=int(settings.ARCHIVE_GENERATION_DELAY_SECONDS),
        )
    except (RedisError, OSError):
        inc_archive_enqueue("error")
        logger.exception("Archive job guard unavailable job=%s", job_id)
        return False
    if not claimed:
        inc_archive_enqueue("deduped")
        return False

    envelope = {
        "jobId": job_id,
        "kind": payload.kind,
        "projectId": payload.project_id,
        "targetId": payload.target_id,
        "assetIds": list(payload.asset_ids),
        "variant": payload.variant,
        "runAt": int(time.time() * 1000) + int(settings.ARCHIVE_GENERATION_DELAY_SECONDS) * 1000,
    }
    try:
        await rc.rpush(settings.ARCHIVE_QUEUE_KEY, json.dumps(envelope, separators=(",", ":")))
    except (RedisError, OSError):
        inc_archive_enqueue("error")
        logger.exception("Failed to enqueue archive job=%s", job_id)
        try:
            # Release the claim so the next poll retries the push
            await rc.delete(f"{JOB_GUARD_PREFIX}{job_id}")
        except (RedisError, OSError):
            pass
        return False

    inc_archive_enqueue("enqueued")
    logger.info("Enqueued archive generation job=%s", job_id)
    return True


__all__ = ["archive_storage_path", "archive_filename", "enqueue_archive_generation", "JOB_GUARD_PREFIX"]
