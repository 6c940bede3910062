from mediagate.core.config import settings
from tests.fixtures.media import API


def test_admin_routes_require_key(media_api):
    r = media_api.client().delete(f"{API}/admin/projects/p1/video-tokens")
    assert r.status_code == 401
    r = media_api.client(headers={"X-Admin-Key": "wrong"}).get(f"{API}/admin/security/events/recent")
    assert r.status_code == 401


def test_admin_surface_disabled_without_configured_key(media_api, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_KEY", None)
    r = media_api.client(admin=True).get(f"{API}/admin/security/events/recent")
    assert r.status_code == 403


def test_revoke_kills_live_tokens(media_api):
    viewer = media_api.client(session="sess-a")
    t1 = media_api.issue_token(viewer)
    t2 = media_api.issue_token(viewer, video_id="v2")
    assert viewer.get(f"{API}/content/{t1}").status_code == 200

    r = media_api.client(admin=True).delete(f"{API}/admin/projects/p1/video-tokens")
    assert r.status_code == 200
    assert r.json() == {"revoked": 2}
    assert r.headers["cache-control"] == "no-store"

    assert viewer.get(f"{API}/content/{t1}").status_code == 403
    assert viewer.get(f"{API}/content/{t2}").status_code == 403
    assert media_api.issue_token(viewer) not in (t1, t2)


def test_recent_events_newest_first(media_api):
    owner = media_api.client(session="sess-a")
    token = media_api.issue_token(owner)
    media_api.client(session="sess-b").get(f"{API}/content/{token}")
    owner.get(f"{API}/content/{token}", headers={"Referer": "https://elsewhere.example.org/"})

    r = media_api.client(admin=True).get(f"{API}/admin/security/events/recent", params={"limit": 10})
    assert r.status_code == 200
    body = r.json()
    assert body["count"] == 2
    assert [e["type"] for e in body["events"]] == ["HOTLINK_DETECTED", "TOKEN_SESSION_MISMATCH"]


def test_recent_events_limit_is_bounded(media_api):
    r = media_api.client(admin=True).get(f"{API}/admin/security/events/recent", params={"limit": 5000})
    assert r.status_code == 422
