from __future__ import annotations

"""
MockRedisClient (async) — test-grade, wrapper-compatible
========================================================
Covers the subset of Redis used by the media access path:

KV        : get/set(ex, px, nx, xx, keepttl)/incr/exists/ttl/expire/delete
Sets      : sadd/smembers/scard
Lists     : rpush/llen/lrange/ltrim
Scan      : keys/scan_iter (glob match)
Health    : ping/close/flushall (+ sync reset())
Lua       : script_load()/script_flush()/evalsha()/eval() supporting INCR + first-hit EXPIRE;
            evalsha() on an unknown sha raises NoScriptError like real Redis

Outage simulation
-----------------
Set `client.fail = True` and every command raises `redis.exceptions.ConnectionError`,
which is what redis-py raises when the server is unreachable.

Design notes
------------
- Values are stored exactly as written. TTLs are second precision.
- Tests may force a window to elapse with `client.expire_now(key)`.
"""

import hashlib
import time
from fnmatch import fnmatch
from typing import Any, AsyncIterator, Dict, List, Optional

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import NoScriptError


def _now() -> float:
    return time.time()


class MockRedisClient:
    def __init__(self) -> None:
        self.store: Dict[str, Any] = {}
        self.sets: Dict[str, set] = {}
        self.lists: Dict[str, List[Any]] = {}
        self.expirations: Dict[str, Optional[float]] = {}
        self._sha_to_script: Dict[str, str] = {}
        self.fail = False
        self.calls: List[str] = []

    # ── plumbing ─────────────────────────────────────────────
    def _check(self, command: str) -> None:
        self.calls.append(command)
        if self.fail:
            raise RedisConnectionError("mock redis is down")

    def _spaces(self):
        return (self.store, self.sets, self.lists)

    def _has(self, key: str) -> bool:
        return any(key in space for space in self._spaces())

    def _purge_expired(self) -> None:
        now = _now()
        for key, exp in list(self.expirations.items()):
            if exp is not None and exp <= now:
                for space in self._spaces():
                    space.pop(key, None)
                self.expirations.pop(key, None)

    def expire_now(self, key: str) -> None:
        """Test helper: make `key` expire immediately."""
        self.expirations[key] = _now() - 1

    # ── housekeeping ─────────────────────────────────────────
    async def ping(self) -> bool:
        self._check("PING")
        return True

    async def close(self) -> None:
        return None

    def reset(self) -> None:
        """Synchronous wipe for fixtures that run outside an event loop."""
        for space in self._spaces():
            space.clear()
        self.expirations.clear()
        self.calls.clear()
        self.fail = False

    async def flushall(self) -> None:
        self.reset()

    # ── strings ──────────────────────────────────────────────
    async def get(self, key: str) -> Optional[Any]:
        self._check("GET")
        self._purge_expired()
        return self.store.get(key)

    async def set(
        self,
        key: str,
        value: Any,
        ex: Optional[int] = None,
        px: Optional[int] = None,
        nx: bool = False,
        xx: bool = False,
        keepttl: bool = False,
    ) -> Optional[bool]:
        self._check("SET")
        self._purge_expired()
        exists = key in self.store
        if (nx and exists) or (xx and not exists):
            return None
        self.store[key] = value
        if ex is not None:
            self.expirations[key] = _now() + int(ex)
        elif px is not None:
            self.expirations[key] = _now() + int(px) / 1000.0
        elif not keepttl:
            self.expirations.pop(key, None)
        return True

    async def incr(self, key: str, amount: int = 1) -> int:
        self._check("INCR")
        self._purge_expired()
        value = int(self.store.get(key, 0)) + int(amount)
        self.store[key] = value
        return value

    async def exists(self, *keys: str) -> int:
        self._check("EXISTS")
        self._purge_expired()
        return sum(1 for k in keys if self._has(k))

    async def expire(self, key: str, seconds: int) -> bool:
        self._check("EXPIRE")
        self._purge_expired()
        if not self._has(key):
            return False
        self.expirations[key] = _now() + int(seconds)
        return True

    async def ttl(self, key: str) -> int:
        self._check("TTL")
        self._purge_expired()
        if not self._has(key):
            return -2
        exp = self.expirations.get(key)
        if exp is None:
            return -1
        return max(int(round(exp - _now())), 0)

    async def delete(self, *keys: str) -> int:
        self._check("DEL")
        removed = 0
        for key in keys:
            hit = False
            for space in self._spaces():
                if space.pop(key, None) is not None:
                    hit = True
            self.expirations.pop(key, None)
            removed += int(hit)
        return removed

    # ── sets ─────────────────────────────────────────────────
    async def sadd(self, key: str, *members: Any) -> int:
        self._check("SADD")
        self._purge_expired()
        s = self.sets.setdefault(key, set())
        before = len(s)
        s.update(members)
        return len(s) - before

    async def smembers(self, key: str) -> set:
        self._check("SMEMBERS")
        self._purge_expired()
        return set(self.sets.get(key, set()))

    async def scard(self, key: str) -> int:
        self._check("SCARD")
        self._purge_expired()
        return len(self.sets.get(key, set()))

    # ── lists ────────────────────────────────────────────────
    async def rpush(self, key: str, *values: Any) -> int:
        self._check("RPUSH")
        self._purge_expired()
        lst = self.lists.setdefault(key, [])
        lst.extend(values)
        return len(lst)

    async def llen(self, key: str) -> int:
        self._check("LLEN")
        self._purge_expired()
        return len(self.lists.get(key, []))

    @staticmethod
    def _slice(n: int, start: int, end: int) -> slice:
        # Redis semantics: inclusive end, negative indices from the tail
        start = n + start if start < 0 else start
        end = n + end if end < 0 else end
        start = max(start, 0)
        end = min(end, n - 1)
        if start > end:
            return slice(0, 0)
        return slice(start, end + 1)

    async def lrange(self, key: str, start: int, end: int) -> List[Any]:
        self._check("LRANGE")
        self._purge_expired()
        lst = self.lists.get(key, [])
        return list(lst[self._slice(len(lst), start, end)])

    async def ltrim(self, key: str, start: int, end: int) -> bool:
        self._check("LTRIM")
        lst = self.lists.get(key, [])
        self.lists[key] = list(lst[self._slice(len(lst), start, end)])
        return True

    # ── scans ────────────────────────────────────────────────
    async def keys(self, pattern: str = "*") -> List[str]:
        self._check("KEYS")
        self._purge_expired()
        names = set(self.store) | set(self.sets) | set(self.lists)
        return sorted(k for k in names if fnmatch(k, pattern))

    async def scan_iter(self, match: Optional[str] = None, count: Optional[int] = None) -> AsyncIterator[str]:
        for key in await self.keys(match or "*"):
            yield key

    # ── Lua ──────────────────────────────────────────────────
    async def script_load(self, script: str) -> str:
        self._check("SCRIPT LOAD")
        sha = hashlib.sha1(script.encode("utf-8")).hexdigest()
        self._sha_to_script[sha] = script
        return sha

    async def script_flush(self) -> bool:
        self._check("SCRIPT FLUSH")
        self._sha_to_script.clear()
        return True

    async def evalsha(self, sha: str, numkeys: int, *keys_and_args: Any) -> Any:
        self._check("EVALSHA")
        script = self._sha_to_script.get(sha)
        if script is None:
            raise NoScriptError("No matching script. Please use EVAL.")
        return await self.eval(script, numkeys, *keys_and_args)

    async def eval(self, script: str, numkeys: int, *keys_and_args: Any) -> Any:
        """INCR + first-hit EXPIRE on KEYS[1] with ARGV[1] seconds; anything else is unsupported."""
        self._check("EVAL")
        upper = script.upper()
        if not ("INCR" in upper and "EXPIRE" in upper and numkeys == 1):
            raise NotImplementedError("MockRedisClient.eval: script pattern not supported")
        self._purge_expired()
        key = str(keys_and_args[0])
        ttl = int(keys_and_args[1]) if len(keys_and_args) > 1 else 0
        current = int(self.store.get(key, 0)) + 1
        self.store[key] = current
        if current == 1 and ttl > 0:
            self.expirations[key] = _now() + ttl
        return current


__all__ = ["MockRedisClient"]
