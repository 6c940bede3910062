# tests/conftest.py
"""
Global test bootstrap
- Sets a deterministic environment BEFORE any mediagate import
- Mounts a mock Redis client into mediagate.core.redis_client
- Turns SlowAPI decorators into no-ops (the media tiers are tested explicitly)
- Wipes the mock between tests
"""

from __future__ import annotations

import os
import tempfile

import pytest

# ──────────────────────────────────────────────────────────────────────────────
# 🌱 Test env (set BEFORE importing the app so settings/limiter pick it up)
# ──────────────────────────────────────────────────────────────────────────────
os.environ.setdefault("POSTGRES_PASSWORD", "test")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("LOG_TO_FILE", "0")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("STORAGE_ROOT", tempfile.mkdtemp(prefix="mediagate-tests-"))
os.environ.setdefault("HOTLINK_PROTECTION", "LOG_ONLY")

# ──────────────────────────────────────────────────────────────────────────────
# 🧪 Install mock Redis globally before any tests run
# ──────────────────────────────────────────────────────────────────────────────
from mediagate.core.redis_client import redis_wrapper  # noqa: E402
from tests.fixtures.mocks.redis import MockRedisClient  # noqa: E402

redis_wrapper._client = MockRedisClient()  # make the app use the mock client

# ──────────────────────────────────────────────────────────────────────────────
# 📦 Pull in the rest of the fixtures (media tree, gate, clients)
# ──────────────────────────────────────────────────────────────────────────────
from tests.fixtures.media import *  # noqa: E402,F401,F403


# ──────────────────────────────────────────────────────────────────────────────
# 🔌 Redis fixture, wiped around every test
# ──────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def redis_mock() -> MockRedisClient:
    """
    ✅ Use this when you want to inspect or modify Redis directly in a test.
    Also autouse: every test starts from an empty, healthy store.
    """
    client = redis_wrapper._client
    if not isinstance(client, MockRedisClient):
        client = MockRedisClient()
        redis_wrapper._client = client
    client.reset()
    yield client
    client.reset()
