from __future__ import annotations

"""
Media fixtures
==============

A small on-disk media tree plus an in-memory repository:

| Project | Notes                       | Videos                                     |
|---------|-----------------------------|--------------------------------------------|
| p1      | open, no password           | v1 (preview + original, unapproved),       |
|         |                             | v2 (approved original), v3 (nothing yet)   |
| p3      | password protected          | v30 (preview)                              |
| p4      | guest mode                  | v40 (preview)                              |

Album `a1` (p1) holds ph1 (READY, social READY), ph2 (READY, social PENDING)
and ph3 (still PROCESSING); album `a2` (p3) holds ph30. Video v2 carries the
deliverables va1 and va2.

`media_api` mounts the v1 router on a bare FastAPI app with the problem+json
handlers and overrides `get_media_gate`, so no database is involved.
"""

import json
from typing import Any, Dict, List, Optional

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request

from mediagate.api.v1.routers import build_v1_router
from mediagate.core.dependencies import MediaGate, get_media_gate
from mediagate.core.exception_handlers import install_exception_handlers
from mediagate.core.storage import LocalStorage
from mediagate.db.models import Album, AlbumPhoto, Project, Video, VideoAsset
from mediagate.repositories.media import MemoryMediaRepository
from mediagate.schemas.security import SecurityPolicy
from mediagate.services.analytics import AnalyticsTracker
from mediagate.services.hotlink import HotlinkPolicy
from mediagate.services.security_events import RECENT_EVENTS_KEY, SecurityEventLog

API = "/api"
ADMIN_KEY = "test-admin-key"

PREVIEW_V1 = "projects/p1/videos/v1/preview-720p.mp4"
ORIGINAL_V1 = "projects/p1/videos/v1/original/rough-cut.mov"
ORIGINAL_V2 = "projects/p1/videos/v2/original/Final Cut.mov"
PREVIEW_SIZE = 256 * 1024 + 123
ORIGINAL_SIZE = 64 * 1024 + 7
PHOTO_PH1 = "projects/p1/albums/a1/photos/harbour.jpg"
SOCIAL_PH1 = "projects/p1/albums/a1/photos/social/harbour.jpg"
PHOTO_PH2 = "projects/p1/albums/a1/photos/dock.png"
PHOTO_SIZE = 9 * 1024 + 5
SOCIAL_SIZE = 2 * 1024 + 1


def pattern_bytes(size: int, seed: int = 0) -> bytes:
    """Deterministic, non-repeating-per-block payload."""
    block = bytes((i + seed) % 251 for i in range(251))
    return (block * (size // 251 + 1))[:size]


def make_request(
    *,
    headers: Optional[Dict[str, str]] = None,
    client_ip: Optional[str] = "203.0.113.5",
    host: str = "media.example.com",
    path: str = "/api/content/token",
) -> Request:
    """Bare Starlette request for unit tests (no app involved)."""
    raw = [(b"host", host.encode("latin-1"))]
    for name, value in (headers or {}).items():
        raw.append((name.lower().encode("latin-1"), value.encode("latin-1")))
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": "GET",
        "scheme": "https",
        "path": path,
        "raw_path": path.encode("latin-1"),
        "query_string": b"",
        "headers": raw,
        "client": (client_ip, 50000) if client_ip else None,
        "server": (host, 443),
    }
    return Request(scope)


def recent_events(redis_mock) -> List[Dict[str, Any]]:
    """Security events currently in the ring, newest first."""
    return [json.loads(item) for item in reversed(redis_mock.lists.get(RECENT_EVENTS_KEY, []))]


def event_types(redis_mock) -> List[str]:
    return [e["type"] for e in recent_events(redis_mock)]


class RecordingAnalytics(AnalyticsTracker):
    """Tracker that remembers calls instead of writing rows."""

    def __init__(self, policy: SecurityPolicy) -> None:
        super().__init__(None, policy)
        self.calls: List[Dict[str, Any]] = []

    async def track_access(self, event_type: str, **kwargs) -> bool:
        self.calls.append({"event_type": event_type, **kwargs})
        return True

    async def track_photo_download(self, **kwargs) -> bool:
        self.calls.append({"event_type": "PHOTO_DOWNLOAD", **kwargs})
        return True


# ─────────────────────────────────────────────────────────────
# 🗂️ Media tree + repository
# ─────────────────────────────────────────────────────────────
@pytest.fixture()
def media_root(tmp_path):
    files = {
        PREVIEW_V1: pattern_bytes(PREVIEW_SIZE),
        ORIGINAL_V1: pattern_bytes(ORIGINAL_SIZE, seed=3),
        ORIGINAL_V2: pattern_bytes(ORIGINAL_SIZE, seed=11),
        PHOTO_PH1: pattern_bytes(PHOTO_SIZE, seed=5),
        SOCIAL_PH1: pattern_bytes(SOCIAL_SIZE, seed=7),
        PHOTO_PH2: pattern_bytes(PHOTO_SIZE, seed=9),
    }
    for rel, data in files.items():
        path = tmp_path / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    return tmp_path


@pytest.fixture()
def media_repo() -> MemoryMediaRepository:
    repo = MemoryMediaRepository()
    repo.add(Project(id="p1", title="Launch Film", slug="launch-film", status="IN_REVIEW", guest_mode=False))
    repo.add(
        Project(id="p3", title="Secret Cut", slug="secret-cut", status="IN_REVIEW", share_password="hash", guest_mode=False)
    )
    repo.add(Project(id="p4", title="Open House", slug="open-house", status="APPROVED", guest_mode=True))

    repo.add(
        Video(
            id="v1",
            project_id="p1",
            name="Rough Cut",
            approved=False,
            original_file_name="rough-cut.mov",
            original_storage_path=ORIGINAL_V1,
            preview_720_path=PREVIEW_V1,
            preview_1080_path=None,
        )
    )
    repo.add(
        Video(
            id="v2",
            project_id="p1",
            name="Approved Cut",
            approved=True,
            original_file_name="Final Cut.mov",
            original_storage_path=ORIGINAL_V2,
            preview_720_path=PREVIEW_V1,
            preview_1080_path=None,
        )
    )
    repo.add(
        Video(
            id="v3",
            project_id="p1",
            name="Still Rendering",
            approved=False,
            original_file_name="render.mov",
            original_storage_path="projects/p1/videos/v3/original/render.mov",
            preview_720_path=None,
            preview_1080_path=None,
        )
    )
    for vid, pid in (("v30", "p3"), ("v40", "p4")):
        repo.add(
            Video(
                id=vid,
                project_id=pid,
                name=f"Video {vid}",
                approved=False,
                original_file_name=f"{vid}.mov",
                original_storage_path=f"projects/{pid}/videos/{vid}/original/{vid}.mov",
                preview_720_path=PREVIEW_V1,
                preview_1080_path=None,
            )
        )
    repo.add(Album(id="a1", project_id="p1", name="Stills"))
    repo.add(Album(id="a2", project_id="p3", name="Secret Stills"))
    repo.add(
        AlbumPhoto(
            id="ph1",
            album_id="a1",
            file_name="harbour.jpg",
            storage_path=PHOTO_PH1,
            status="READY",
            social_storage_path=SOCIAL_PH1,
            social_status="READY",
        )
    )
    repo.add(
        AlbumPhoto(
            id="ph2",
            album_id="a1",
            file_name="dock.png",
            storage_path=PHOTO_PH2,
            status="READY",
            social_storage_path=None,
            social_status="PENDING",
        )
    )
    repo.add(
        AlbumPhoto(
            id="ph3",
            album_id="a1",
            file_name="crane.jpg",
            storage_path="projects/p1/albums/a1/photos/crane.jpg",
            status="PROCESSING",
            social_status="PENDING",
        )
    )
    repo.add(
        AlbumPhoto(
            id="ph30",
            album_id="a2",
            file_name="secret.jpg",
            storage_path="projects/p3/albums/a2/photos/secret.jpg",
            status="READY",
            social_status="PENDING",
        )
    )
    for asset_id in ("va1", "va2"):
        repo.add(
            VideoAsset(
                id=asset_id,
                video_id="v2",
                file_name=f"{asset_id}.wav",
                storage_path=f"projects/p1/videos/v2/assets/{asset_id}.wav",
            )
        )
    return repo


# ─────────────────────────────────────────────────────────────
# 🧩 App wiring
# ─────────────────────────────────────────────────────────────
class MediaApi:
    """Test app plus a swappable `MediaGate` (see `configure`)."""

    def __init__(self, root, repo: MemoryMediaRepository) -> None:
        self.root = root
        self.repo = repo
        self.app = FastAPI()
        install_exception_handlers(self.app)
        self.app.include_router(build_v1_router(), prefix=API)
        self.app.dependency_overrides[get_media_gate] = lambda: self.gate
        self.configure()

    def configure(self, *, policy: Optional[SecurityPolicy] = None, hotlink: Optional[HotlinkPolicy] = None) -> MediaGate:
        policy = policy or SecurityPolicy()
        self.gate = MediaGate(
            repo=self.repo,
            policy=policy,
            events=SecurityEventLog(None, policy),
            analytics=RecordingAnalytics(policy),
            storage=LocalStorage(str(self.root)),
            hotlink=hotlink or HotlinkPolicy(),
        )
        return self.gate

    def client(
        self,
        *,
        session: Optional[str] = None,
        project_id: str = "p1",
        cookies: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
        admin: bool = False,
    ) -> TestClient:
        jar = dict(cookies or {})
        if session:
            jar[f"share_session_{project_id}"] = session
        hdrs = dict(headers or {})
        if jar:
            hdrs["cookie"] = "; ".join(f"{k}={v}" for k, v in jar.items())
        if admin:
            hdrs["X-Admin-Key"] = ADMIN_KEY
        return TestClient(self.app, headers=hdrs)

    def issue_token(self, client: TestClient, *, project_id: str = "p1", video_id: str = "v1", quality: str = "720p") -> str:
        r = client.get(f"{API}/share/{project_id}/video-token", params={"videoId": video_id, "quality": quality})
        assert r.status_code == 200, r.text
        return r.json()["token"]

    def issue_photo_token(self, client: TestClient, *, project_id: str = "p1", photo_id: str = "ph1") -> str:
        r = client.get(f"{API}/share/{project_id}/photo-token", params={"photoId": photo_id})
        assert r.status_code == 200, r.text
        return r.json()["token"]


@pytest.fixture()
def media_api(media_root, media_repo) -> MediaApi:
    return MediaApi(media_root, media_repo)


__all__ = [
    "API",
    "ADMIN_KEY",
    "PREVIEW_V1",
    "ORIGINAL_V1",
    "ORIGINAL_V2",
    "PREVIEW_SIZE",
    "ORIGINAL_SIZE",
    "PHOTO_PH1",
    "SOCIAL_PH1",
    "PHOTO_PH2",
    "PHOTO_SIZE",
    "SOCIAL_SIZE",
    "pattern_bytes",
    "make_request",
    "recent_events",
    "event_types",
    "RecordingAnalytics",
    "MediaApi",
    "media_root",
    "media_repo",
    "media_api",
]
