import uuid

import pytest
from fastapi.testclient import TestClient

import mediagate.main as main
from mediagate.core.dependencies import get_media_gate
from tests.fixtures.media import API


@pytest.fixture()
def app_client(media_api):
    app = main.create_app()
    app.dependency_overrides[get_media_gate] = lambda: media_api.gate
    return TestClient(app)


def test_healthz_and_request_id(app_client):
    r = app_client.get("/healthz")
    assert r.status_code == 200
    assert r.json() == {"ok": True}
    uuid.UUID(r.headers["x-request-id"])
    assert "server" not in r.headers

    rid = str(uuid.uuid4())
    assert app_client.get("/healthz", headers={"X-Request-ID": rid}).headers["x-request-id"] == rid


def test_readyz_reports_failed_checks(app_client, monkeypatch):
    async def _db_down():
        return False

    monkeypatch.setattr(main, "db_healthcheck", _db_down)
    r = app_client.get("/readyz")
    assert r.status_code == 503
    assert r.json() == {"ready": False, "checks": {"db": False, "redis": True}}


def test_metrics_exposition(app_client):
    r = app_client.get("/metrics")
    assert r.status_code == 200
    assert "mediagate_tokens_issued_total" in r.text


def test_stream_through_full_middleware_stack(app_client, media_api):
    viewer_headers = {"cookie": "share_session_p1=sess-a"}
    r = app_client.get(f"{API}/share/p1/video-token", params={"videoId": "v1"}, headers=viewer_headers)
    assert r.status_code == 200
    token = r.json()["token"]

    r = app_client.get(f"{API}/content/{token}", headers={**viewer_headers, "Range": "bytes=0-15"})
    assert r.status_code == 206
    assert r.headers["x-frame-options"] == "SAMEORIGIN"
    assert r.headers["x-content-type-options"] == "nosniff"
    assert r.headers["content-length"] == "16"
    assert "x-request-id" in r.headers

    problem = app_client.get(f"{API}/content/{token}")
    assert problem.status_code == 401
    assert problem.headers["content-type"].startswith("application/problem+json")
    assert problem.json()["request_id"] == problem.headers["x-request-id"]
