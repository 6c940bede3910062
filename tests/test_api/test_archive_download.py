import json

from sqlalchemy.exc import OperationalError

from mediagate.core.config import settings
from tests.fixtures.media import API, pattern_bytes, recent_events


def _archive_token(media_api, client, body):
    r = client.post(f"{API}/share/p1/archive-token", json=body)
    assert r.status_code == 200, r.text
    assert r.headers["cache-control"] == "no-store"
    assert r.json()["expiresIn"] == settings.ARCHIVE_TOKEN_TTL_SECONDS
    return r.json()["token"]


def test_missing_archive_is_202_and_enqueued_once(media_api, redis_mock):
    viewer = media_api.client(session="sess-a")
    token = _archive_token(media_api, viewer, {"videoId": "v2"})

    for _ in range(3):
        r = viewer.get(f"{API}/content/archive/{token}")
        assert r.status_code == 202
        assert r.json() == {"status": "generating", "retryAfterMs": 5000}
        assert r.headers["retry-after"] == "5"
        assert r.headers["cache-control"] == "no-store"

    assert len(redis_mock.lists[settings.ARCHIVE_QUEUE_KEY]) == 1


def test_ready_archive_streams_as_zip_attachment(media_api, media_root):
    data = pattern_bytes(5000, seed=42)
    target = media_root / "archives" / "p1" / "video-v2-full.zip"
    target.parent.mkdir(parents=True)
    target.write_bytes(data)

    viewer = media_api.client(session="sess-a")
    token = _archive_token(media_api, viewer, {"videoId": "v2"})

    r = viewer.get(f"{API}/content/archive/{token}", headers={"Range": "bytes=0-9"})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("application/zip")
    assert r.headers["content-disposition"] == 'attachment; filename="Launch_Film_Approved_Cut.zip"'
    assert r.headers["content-length"] == "5000"
    assert r.headers["accept-ranges"] == "none"
    assert "content-range" not in r.headers
    assert r.content == data


def test_album_variant_lands_at_its_own_path(media_api, media_root):
    target = media_root / "archives" / "p1" / "album-a1-social.zip"
    target.parent.mkdir(parents=True)
    target.write_bytes(b"PK\x03\x04")

    viewer = media_api.client(session="sess-a")
    token = _archive_token(media_api, viewer, {"albumId": "a1", "variant": "social"})

    r = viewer.get(f"{API}/content/archive/{token}")
    assert r.status_code == 200
    assert r.headers["content-disposition"] == 'attachment; filename="Launch_Film_Stills_social.zip"'


def test_invalid_archive_token_is_403(media_api):
    r = media_api.client().get(f"{API}/content/archive/{'B' * 22}")
    assert r.status_code == 403
    assert r.json()["detail"] == "Invalid or expired download link"


def test_archive_link_dies_with_its_target(media_api):
    viewer = media_api.client(session="sess-a")
    token = _archive_token(media_api, viewer, {"videoId": "v2"})
    del media_api.repo.videos["v2"]

    assert viewer.get(f"{API}/content/archive/{token}").status_code == 403


def test_archive_ip_tier(media_api, monkeypatch):
    monkeypatch.setattr(settings, "ARCHIVE_IP_RATE_LIMIT", 1)
    viewer = media_api.client(session="sess-a")
    token = _archive_token(media_api, viewer, {"videoId": "v2"})

    assert viewer.get(f"{API}/content/archive/{token}").status_code == 202
    r = viewer.get(f"{API}/content/archive/{token}")
    assert r.status_code == 429
    assert r.json()["detail"] == "Too many download requests. Please slow down."


def test_selection_streams_its_own_archive(media_api, media_root, redis_mock):
    viewer = media_api.client(session="sess-a")
    whole = _archive_token(media_api, viewer, {"albumId": "a1"})
    some = _archive_token(media_api, viewer, {"albumId": "a1", "assetIds": ["ph2"]})

    (media_root / "archives" / "p1").mkdir(parents=True)
    (media_root / "archives" / "p1" / "album-a1-full.zip").write_bytes(b"PK-whole")

    assert viewer.get(f"{API}/content/archive/{whole}").content == b"PK-whole"
    assert viewer.get(f"{API}/content/archive/{some}").status_code == 202

    job = json.loads(redis_mock.lists[settings.ARCHIVE_QUEUE_KEY][-1])
    assert job["assetIds"] == ["ph2"]
    assert job["jobId"].startswith("album-a1-full-")


def test_database_failure_is_a_logged_500(media_api, redis_mock, monkeypatch):
    viewer = media_api.client(session="sess-a")
    token = _archive_token(media_api, viewer, {"videoId": "v2"})

    async def broken(video_id):
        raise OperationalError("SELECT 1", {}, Exception("connection reset"))

    monkeypatch.setattr(media_api.repo, "get_video", broken)

    r = viewer.get(f"{API}/content/archive/{token}")
    assert r.status_code == 500
    assert r.json()["detail"] == "Stream failed"
    ev = recent_events(redis_mock)[0]
    assert ev["type"] == "STREAM_ERROR"
    assert ev["severity"] == "CRITICAL"
    assert ev["details"] == {"error": "OperationalError", "phase": "archive", "jobId": "video-v2-full"}
