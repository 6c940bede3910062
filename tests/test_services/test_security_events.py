from mediagate.schemas.security import SecurityPolicy
from mediagate.services.analytics import EVENT_DOWNLOAD_COMPLETE, EVENT_PHOTO_DOWNLOAD, AnalyticsTracker
from mediagate.services.security_events import (
    SecurityEventLog,
    SecurityEventType,
    Severity,
    recent_security_events,
)
from tests.fixtures.media import make_request, recent_events


class FakeSession:
    """Just enough of AsyncSession for the best-effort writers."""

    def __init__(self, fail_commit: bool = False):
        self.added = []
        self.commits = 0
        self.rollbacks = 0
        self.fail_commit = fail_commit

    def add(self, obj):
        self.added.append(obj)

    async def commit(self):
        if self.fail_commit:
            raise RuntimeError("db down")
        self.commits += 1

    async def rollback(self):
        self.rollbacks += 1


async def test_event_reaches_db_and_ring(redis_mock):
    db = FakeSession()
    log = SecurityEventLog(db, SecurityPolicy())
    await log.log(
        SecurityEventType.RATE_LIMIT_HIT,
        severity=Severity.WARNING,
        request=make_request(headers={"referer": "https://x.example/"}),
        session_id="s1",
        project_id="p1",
        details={"purpose": "content-stream-ip", "token": "must-not-leak"},
        was_blocked=True,
    )

    row = db.added[0]
    assert row.type == "RATE_LIMIT_HIT"
    assert row.ip_address == "203.0.113.5"
    assert row.was_blocked is True
    assert "token" not in row.details
    assert db.commits == 1

    ev = recent_events(redis_mock)[0]
    assert ev["sessionFingerprint"] and ev["sessionFingerprint"] != "s1"
    assert ev["details"] == {"purpose": "content-stream-ip"}


async def test_db_failure_is_swallowed_and_rolled_back(redis_mock):
    db = FakeSession(fail_commit=True)
    log = SecurityEventLog(db, SecurityPolicy())
    await log.log(SecurityEventType.STREAM_ERROR, severity=Severity.CRITICAL)

    assert db.rollbacks == 1
    assert len(recent_events(redis_mock)) == 1


async def test_redis_failure_is_swallowed(redis_mock):
    redis_mock.fail = True
    db = FakeSession()
    await SecurityEventLog(db, SecurityPolicy()).log(SecurityEventType.HOTLINK_DETECTED)
    assert db.commits == 1


async def test_tracking_disabled_persists_nothing(redis_mock):
    db = FakeSession()
    log = SecurityEventLog(db, SecurityPolicy(track_security_logs=False))
    await log.log(SecurityEventType.HOTLINK_BLOCKED, was_blocked=True)

    assert db.added == []
    assert recent_events(redis_mock) == []


async def test_ring_is_capped_and_read_newest_first(redis_mock):
    log = SecurityEventLog(None, SecurityPolicy(), recent_max=10)
    for i in range(15):
        await log.log(SecurityEventType.SUSPICIOUS_ACTIVITY, details={"n": i})

    events = await recent_security_events(limit=100)
    assert [e["details"]["n"] for e in events] == list(range(14, 4, -1))
    assert len(await recent_security_events(limit=3)) == 3


async def test_detached_log_has_no_session():
    log = SecurityEventLog(FakeSession(), SecurityPolicy(), recent_max=20)
    detached = log.detached()
    assert detached.db is None
    assert detached.recent_max == 20


# ─────────────────────────────────────────────────────────────
# 📈 Analytics
# ─────────────────────────────────────────────────────────────
async def _track(tracker, **overrides):
    kwargs = dict(video_id="v1", project_id="p1", session_id="s1", quality="720p", bandwidth=100)
    kwargs.update(overrides)
    return await tracker.track_access(EVENT_DOWNLOAD_COMPLETE, **kwargs)


async def test_analytics_writes_row():
    db = FakeSession()
    assert await _track(AnalyticsTracker(db, SecurityPolicy()))
    row = db.added[0]
    assert row.event_type == EVENT_DOWNLOAD_COMPLETE
    assert row.bandwidth == 100


async def test_analytics_skips_admin_and_disabled():
    db = FakeSession()
    assert not await _track(AnalyticsTracker(db, SecurityPolicy()), is_admin=True)
    assert not await _track(AnalyticsTracker(db, SecurityPolicy(track_analytics=False)))
    assert not await _track(AnalyticsTracker(None, SecurityPolicy()))
    assert db.added == []


async def test_analytics_failure_is_swallowed():
    db = FakeSession(fail_commit=True)
    assert not await _track(AnalyticsTracker(db, SecurityPolicy()))
    assert db.rollbacks == 1


async def test_photo_download_writes_album_row():
    db = FakeSession()
    tracker = AnalyticsTracker(db, SecurityPolicy())

    assert await tracker.track_photo_download(
        photo_id="ph1", album_id="a1", project_id="p1", variant="social", session_id="sess-a"
    )
    row = db.added[0]
    assert row.event_type == EVENT_PHOTO_DOWNLOAD
    assert (row.photo_id, row.album_id, row.variant) == ("ph1", "a1", "social")

    assert not await tracker.track_photo_download(photo_id="ph1", album_id="a1", project_id="p1", is_admin=True)
    assert len(db.added) == 1
