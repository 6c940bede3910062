from __future__ import annotations

"""Prometheus counters for the media access path.

Exposed through `GET /metrics` (see `mediagate.main`). Helpers take plain
string labels so call sites stay one-liners.
"""

from prometheus_client import Counter

tokens_issued_total = Counter(
    "mediagate_tokens_issued_total",
    "Access tokens issued (or reused from the per-session cache)",
    labelnames=("kind",),
)
token_verifications_total = Counter(
    "mediagate_token_verifications_total",
    "Token verification outcomes",
    labelnames=("result",),
)
rate_limit_blocks_total = Counter(
    "mediagate_rate_limit_blocks_total",
    "Requests denied by an application rate-limit tier",
    labelnames=("purpose",),
)
hotlink_verdicts_total = Counter(
    "mediagate_hotlink_verdicts_total",
    "Hotlink detector positives by severity and enforcement action",
    labelnames=("severity", "action"),
)
bytes_served_total = Counter(
    "mediagate_bytes_served_total",
    "Bytes scheduled for delivery by response mode",
    labelnames=("mode",),
)
archive_enqueues_total = Counter(
    "mediagate_archive_enqueues_total",
    "Archive generation enqueue attempts",
    labelnames=("result",),
)
security_events_total = Counter(
    "mediagate_security_events_total",
    "Security events recorded",
    labelnames=("type", "severity"),
)
redis_errors_total = Counter(
    "mediagate_redis_errors_total",
    "Redis errors encountered",
    labelnames=("component",),
)


def inc_token_issued(kind: str) -> None:
    tokens_issued_total.labels(kind=kind).inc()


def inc_token_verified(result: str) -> None:
    token_verifications_total.labels(result=result).inc()


def inc_rate_limit_block(purpose: str) -> None:
    rate_limit_blocks_total.labels(purpose=purpose).inc()


def inc_hotlink(severity: str, action: str) -> None:
    hotlink_verdicts_total.labels(severity=severity, action=action).inc()


def add_bytes_served(mode: str, n: int) -> None:
    if n > 0:
        bytes_served_total.labels(mode=mode).inc(n)


def inc_archive_enqueue(result: str) -> None:
    archive_enqueues_total.labels(result=result).inc()


def inc_security_event(event_type: str, severity: str) -> None:
    security_events_total.labels(type=event_type, severity=severity).inc()


def inc_redis_error(component: str) -> None:
    redis_errors_total.labels(component=component).inc()


__all__ = [
    "inc_token_issued",
    "inc_token_verified",
    "inc_rate_limit_block",
    "inc_hotlink",
    "add_bytes_served",
    "inc_archive_enqueue",
    "inc_security_event",
    "inc_redis_error",
]
