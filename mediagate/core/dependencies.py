# mediagate/core/dependencies.py
from __future__ import annotations

"""
Request-scoped collaborators for the media routes
=================================================

`get_media_gate` assembles everything a media request needs, once:

- the repository (projects, videos, albums),
- the **effective security policy** (settings row over configuration),
- the security event log and analytics tracker bound to that policy,
- the storage backend.

Routes depend on `MediaGate` only, so tests override a single dependency.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from mediagate.core.storage import LocalStorage, get_storage
from mediagate.db.session import get_async_db
from mediagate.repositories.media import MediaRepositoryProtocol, get_media_repository
from mediagate.schemas.security import SecurityPolicy
from mediagate.services.analytics import AnalyticsTracker
from mediagate.services.hotlink import HotlinkPolicy
from mediagate.services.security_events import SecurityEventLog


@dataclass
class MediaGate:
    repo: MediaRepositoryProtocol
    policy: SecurityPolicy
    events: SecurityEventLog
    analytics: AnalyticsTracker
    storage: LocalStorage
    hotlink: HotlinkPolicy


async def build_media_gate(
    repo: MediaRepositoryProtocol,
    *,
    db: Optional[AsyncSession] = None,
    storage: Optional[LocalStorage] = None,
    hotlink: Optional[HotlinkPolicy] = None,
) -> MediaGate:
    policy = await repo.get_security_policy()
    return MediaGate(
        repo=repo,
        policy=policy,
        events=SecurityEventLog(db, policy),
        analytics=AnalyticsTracker(db, policy),
        storage=storage or get_storage(),
        hotlink=hotlink or HotlinkPolicy.from_settings(),
    )


async def get_media_gate(db: AsyncSession = Depends(get_async_db)) -> MediaGate:
    """FastAPI dependency: one `MediaGate` per request."""
    return await build_media_gate(get_media_repository(db), db=db)


__all__ = ["MediaGate", "build_media_gate", "get_media_gate"]
