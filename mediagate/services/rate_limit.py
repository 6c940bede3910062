# mediagate/services/rate_limit.py
from __future__ import annotations

"""
MediaGate — Fixed-window rate limiting (Redis)
==============================================

Counters live at `ratelimit:{purpose}:{sha256(identity)[:16]}` and are shared
by every instance. A window starts at its first hit (`INCR` + first-hit
`EXPIRE`) and vanishes when the TTL elapses; counts within a window are
monotonic.

The video route stacks two tiers; archives and photos have one IP tier each.
Every tier answers 429 with its own message:

| Tier    | Purpose                  | Identity      | Default limit |
|---------|--------------------------|---------------|---------------|
| IP      | `content-stream-ip`      | client IP     | 1000 / 60s    |
| Session | `content-stream-session` | share session | 600 / 60s     |
| Archive | `archive-download-ip`    | client IP     | 30 / 60s      |
| Photo   | `photo-content-ip`       | client IP     | 3000 / 60s    |

Failure policy: when Redis is unreachable the limiter **fails closed**
(503 with `Retry-After`), since unlimited media egress is worse than a short
outage.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from redis.exceptions import RedisError

from mediagate.api.http_utils import get_client_ip
from mediagate.core.exceptions import RateLimitedException, ServiceUnavailableException
from mediagate.core.metrics import inc_rate_limit_block, inc_redis_error
from mediagate.core.redis_client import redis_wrapper

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "Too many requests. Please slow down."


@dataclass(frozen=True)
class RateLimitRule:
    window_seconds: int
    max_requests: int
    message: str = DEFAULT_MESSAGE


@dataclass(frozen=True)
class RateLimitDenial:
    purpose: str
    message: str
    retry_after: int
    limit: int
    count: int

    def to_exception(self) -> RateLimitedException:
        return RateLimitedException(message=self.message, retry_after=self.retry_after, limit=self.limit)


def raise_for_denial(denial: Optional[RateLimitDenial]) -> None:
    if denial is not None:
        raise denial.to_exception()


def rate_limit_key(purpose: str, identity: str) -> str:
    digest = hashlib.sha256(identity.encode("utf-8")).hexdigest()[:16]
    return f"ratelimit:{purpose}:{digest}"


def default_identity(request: Request) -> str:
    return f"{get_client_ip(request)}:{request.headers.get('user-agent', 'unknown')}"


async def rate_limit(
    request: Request,
    rule: RateLimitRule,
    purpose: str,
    identity: Optional[str] = None,
) -> Optional[RateLimitDenial]:
    """
    Count one request against `rule`.

    Returns None when allowed, or a `RateLimitDenial` carrying `retry_after`
    (seconds until the window resets). Raises `ServiceUnavailableException`
    when the counter store is unavailable.
    """
    key = rate_limit_key(purpose, identity or default_identity(request))
    try:
        count, ttl = await redis_wrapper.incr_window(key, rule.window_seconds)
    except (RedisError, RuntimeError, OSError) as exc:
        inc_redis_error("rate_limit")
        logger.error("Rate limiter unavailable for %s: %s", purpose, exc)
        raise ServiceUnavailableException("Rate limiter unavailable", retry_after=5) from exc

    if count <= rule.max_requests:
        return None

    inc_rate_limit_block(purpose)
    return RateLimitDenial(
        purpose=purpose,
        message=rule.message,
        retry_after=max(1, int(ttl)),
        limit=rule.max_requests,
        count=count,
    )


__all__ = ["RateLimitRule", "RateLimitDenial", "rate_limit", "raise_for_denial", "rate_limit_key", "default_identity"]
