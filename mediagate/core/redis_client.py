# mediagate/core/redis_client.py
from __future__ import annotations

"""
MediaGate — Redis Client (Async)
================================
Central, **single source of truth** for Redis access in the service. Redis holds
every piece of shared mutable state: access tokens, rate-limit counters, hotlink
velocity counters, the recent security-event ring and the archive job queue.

What this provides
------------------
• Resilient connection manager with retries & backoff
• Pooled async client with health checks
• Fixed-window counters (`INCR` + first-hit `EXPIRE`, atomic via Lua)
• Generic JSON set/get helpers

Public API (imported as `redis_wrapper`)
----------------------------------------
- await redis_wrapper.connect() / await redis_wrapper.close() / await redis_wrapper.is_connected()
- redis_wrapper.client
- await redis_wrapper.incr_window(key, window_seconds)
- await redis_wrapper.json_set(key, value, ttl_seconds=None)
- await redis_wrapper.json_get(key, default=None)

Design notes
------------
• Counters never live in process memory; multi-instance deployments share them.
• Compatible with test mocks that lack `EVAL` (falls back to INCR + EXPIRE).
• A flushed script cache (`NOSCRIPT`) runs the script inline and reloads it.
"""

import asyncio
import json
import logging
import os
import random
from typing import Any, Optional, Protocol, Tuple

import redis.asyncio as redis
from redis.exceptions import NoScriptError, RedisError

from mediagate.core.config import settings

logger = logging.getLogger("redis")

# ─────────────────────────────────────────────────────────────────────────────
# Tunables (env-aware sensible defaults)
# ─────────────────────────────────────────────────────────────────────────────
MAX_RETRIES = int(os.getenv("REDIS_CONNECT_MAX_RETRIES", "5"))
BASE_DELAY = float(os.getenv("REDIS_CONNECT_BASE_DELAY", "0.3"))  # seconds
HEALTH_CHECK_INTERVAL = int(os.getenv("REDIS_HEALTH_CHECK_INTERVAL", "30"))  # seconds
SOCKET_TIMEOUT = float(os.getenv("REDIS_SOCKET_TIMEOUT", "3"))
SOCKET_CONNECT_TIMEOUT = float(os.getenv("REDIS_SOCKET_CONNECT_TIMEOUT", "3"))
POOL_MAX_CONNECTIONS = int(os.getenv("REDIS_POOL_MAX_CONNECTIONS", "128"))
CLIENT_NAME = os.getenv("REDIS_CLIENT_NAME", "mediagate-api")


class _RedisProto(Protocol):
    async def ping(self) -> Any: ...
    async def script_load(self, script: str) -> Any: ...
    async def evalsha(self, sha: str, numkeys: int, *keys_and_args: Any) -> Any: ...
    async def eval(self, script: str, numkeys: int, *keys_and_args: Any) -> Any: ...
    async def set(self, name: str, value: Any, *, ex: Optional[int] = None, px: Optional[int] = None, nx: Optional[bool] = None) -> Any: ...
    async def get(self, name: str) -> Any: ...
    async def incr(self, name: str, amount: int = 1) -> Any: ...
    async def expire(self, name: str, time: int) -> Any: ...
    async def ttl(self, name: str) -> Any: ...
    async def exists(self, *names: Any) -> Any: ...
    async def delete(self, *names: Any) -> Any: ...
    async def close(self) -> Any: ...


# ─────────────────────────────────────────────────────────────────────────────
# Lua: INCR and set the window TTL on the first hit only
# ─────────────────────────────────────────────────────────────────────────────
WINDOW_INCR_LUA = """
-- KEYS[1] = counter key
-- ARGV[1] = window seconds
local current = redis.call('INCR', KEYS[1])
if current == 1 then
  redis.call('EXPIRE', KEYS[1], ARGV[1])
end
return current
"""


class RedisClient:
    """
    Singleton Redis connection manager (asyncio).

    Features
    --------
    • Resilient connect with exponential backoff + jitter
    • Pooled connections, health checks
    • Fixed-window counter helper (Lua) with safe fallback
    • JSON helpers
    """

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self._client: Optional[_RedisProto] = None
        self._window_sha: Optional[str] = None

    # ── lifecycle ────────────────────────────────────────────────────────────
    async def connect(self) -> None:
        """
        Establish a connection with retries; pre-load the counter Lua script.

        Steps
        -----
        - **[Step 1]** Reuse a healthy client when possible.
        - **[Step 2]** Attempt connection with backoff and jitter.
        - **[Step 3]** Load Lua script (best-effort).
        """
        # ── [Step 1] Reuse an existing healthy client ───────────────────────
        if self._client:
            try:
                await self._client.ping()
                logger.debug("Redis already connected.")
                return
            except Exception:
                self._client = None  # stale client → reconnect

        attempt = 0
        last_err: Optional[Exception] = None

        # ── [Step 2] Retry with backoff ─────────────────────────────────────
        while attempt < MAX_RETRIES:
            attempt += 1
            try:
                self._client = redis.Redis.from_url(
                    self.redis_url.strip(),
                    decode_responses=True,
                    health_check_interval=HEALTH_CHECK_INTERVAL,
                    socket_keepalive=True,
                    socket_timeout=SOCKET_TIMEOUT,
                    socket_connect_timeout=SOCKET_CONNECT_TIMEOUT,
                    retry_on_timeout=True,
                    max_connections=POOL_MAX_CONNECTIONS,
                    client_name=CLIENT_NAME,
                )
                await self._client.ping()

                # ── [Step 3] Best-effort script preload ────────────────────
                await self._reload_window_script()

                logger.info("✅ Connected to Redis")
                return
            except Exception as e:  # noqa: BLE001
                last_err = e
                delay = self._backoff(attempt)
                logger.warning(
                    "Redis connect attempt %s/%s failed: %s (retrying in %.2fs)",
                    attempt, MAX_RETRIES, repr(e), delay,
                )
                await asyncio.sleep(delay)

        self._client = None
        logger.error("❌ Redis connection failed after %s retries.", MAX_RETRIES)
        raise RuntimeError("Redis connection failed") from last_err

    async def close(self) -> None:
        """Gracefully close the client and its pool."""
        if not self._client:
            return
        try:
            await self._client.close()
            pool = getattr(self._client, "connection_pool", None)
            if pool:
                try:
                    await pool.disconnect(inuse_connections=True)  # type: ignore[attr-defined]
                except Exception:
                    pass
            logger.info("🛑 Redis connection closed.")
        except RedisError as e:
            logger.warning("Error closing Redis connection: %s", e)
        finally:
            self._client = None
            self._window_sha = None

    async def is_connected(self) -> bool:
        """Return True if `PING` succeeds (healthy connection)."""
        if not self._client:
            return False
        try:
            return bool(await self._client.ping())
        except RedisError:
            return False

    @property
    def client(self) -> _RedisProto:
        """Low-level client; ensure `connect()` was called at startup."""
        if not self._client:
            raise RuntimeError("Redis client not initialized. Call connect() first.")
        return self._client

    # ── helpers: counters / JSON ────────────────────────────────────────────
    async def _reload_window_script(self) -> None:
        """(Re)load the counter script; on failure fall back to plain `EVAL`."""
        try:
            self._window_sha = await self.client.script_load(WINDOW_INCR_LUA)
        except Exception as e:  # noqa: BLE001
            logger.warning("Redis script load failed: %s", e)
            self._window_sha = None

    async def incr_window(self, key: str, window_seconds: int) -> Tuple[int, int]:
        """
        Increment a fixed-window counter and return ``(count, ttl_seconds)``.

        The TTL is set only on the first hit so the window starts at the first
        request and the counter vanishes when it elapses. Errors from Redis
        propagate; callers decide whether to fail open or closed.
        """
        rc = self.client
        try:
            if self._window_sha and hasattr(rc, "evalsha"):
                try:
                    count = await rc.evalsha(self._window_sha, 1, key, int(window_seconds))
                except NoScriptError:
                    # Script cache flushed (restart or SCRIPT FLUSH): run inline, then reload
                    logger.warning("Redis window script missing; reloading")
                    count = await rc.eval(WINDOW_INCR_LUA, 1, key, int(window_seconds))
                    await self._reload_window_script()
            elif hasattr(rc, "eval"):
                count = await rc.eval(WINDOW_INCR_LUA, 1, key, int(window_seconds))
            else:
                raise AttributeError("Redis client lacks eval/evalsha")
            count = int(count)
        except (AttributeError, NotImplementedError):
            # Skinny clients: INCR then EXPIRE on the first hit
            count = int(await rc.incr(key))
            if count == 1:
                await rc.expire(key, int(window_seconds))

        ttl = await rc.ttl(key)
        try:
            ttl = int(ttl)
        except (TypeError, ValueError):
            ttl = -1
        if ttl < 0:
            # Lost TTL (crash between INCR and EXPIRE): repair so the key cannot live forever
            await rc.expire(key, int(window_seconds))
            ttl = int(window_seconds)
        return count, ttl

    async def json_set(self, key: str, value: Any, *, ttl_seconds: Optional[int] = None) -> None:
        """Generic JSON setter with optional TTL."""
        data = json.dumps(value, separators=(",", ":"), ensure_ascii=False)
        if ttl_seconds:
            await self.client.set(key, data, ex=int(ttl_seconds))
        else:
            await self.client.set(key, data)

    async def json_get(self, key: str, default: Any = None) -> Any:
        """Generic JSON getter with sensible default on parse errors/None."""
        raw = await self.client.get(key)
        if raw is None:
            return default
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8", errors="replace")
        try:
            return json.loads(raw)
        except Exception:
            return default

    @staticmethod
    def _backoff(attempt: int) -> float:
        # Exponential backoff with jitter (cap at 3s)
        return min(3.0, BASE_DELAY * (2 ** (attempt - 1))) + random.uniform(0, 0.25)


# ─────────────────────────────────────────────────────────────────────────────
# Singleton instance
# ─────────────────────────────────────────────────────────────────────────────
redis_wrapper = RedisClient(settings.REDIS_URL)


__all__ = ["RedisClient", "redis_wrapper", "WINDOW_INCR_LUA"]
