# mediagate/core/exceptions.py
from __future__ import annotations

"""
MediaGate — Application Exceptions
==================================
A small, consistent layer on top of FastAPI/Starlette's `HTTPException` that
lets us attach structured metadata and render it through
`mediagate.core.exception_handlers` as problem+json.

Key ideas
---------
- One base `AppException` that carries `code`, `request_id`, `details`, `extra`.
- Domain exceptions inherit from it and set sane defaults.
- Authorization failures are **opaque**: the body always says "Access denied";
  the real reason only goes to the security event log.
- Not-found states are distinct from authorization failures (expected, transient).

Usage
-----
    raise AccessDeniedException()                      # 403
    raise AccessDeniedException(status_code=401)       # missing session / password gate
    raise RateLimitedException(message="Too many requests", retry_after=12, limit=600)
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

__all__ = [
    "AppException",
    "AccessDeniedException",
    "MediaNotFoundException",
    "RateLimitedException",
    "RangeNotSatisfiableException",
    "ServiceUnavailableException",
]

ACCESS_DENIED_MESSAGE = "Access denied"


# ──────────────────────────────────────────────────────────────
# 📦 Core: AppException
# ──────────────────────────────────────────────────────────────
class AppException(HTTPException):
    """Base application-level exception with optional metadata.

    Attributes
    -----------
    status_code : int
        HTTP status code.
    message : str
        Human-readable error message (serialized as `detail` as well).
    code : int
        Optional internal/typed error code. Defaults to `status_code`.
    request_id : str | None
        Optional request correlation id.
    details : dict | list | str | None
        Machine-readable details.
    extra : dict | None
        Additional non-sensitive fields merged into the body (e.g. `retryAfter`).
    headers : dict | None
        Optional headers (e.g. `{"Retry-After": "30"}`).
    """

    def __init__(
        self,
        *,
        status_code: int,
        message: str,
        code: Optional[int] = None,
        request_id: Optional[str] = None,
        details: Optional[Any] = None,
        extra: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=message, headers=headers)
        self.code: int = int(code or status_code)
        self.message: str = message
        self.request_id: Optional[str] = request_id
        self.details: Optional[Any] = details
        self.extra: Dict[str, Any] = extra or {}

    # ── [Helper] Canonical body used by handlers ───────────────────────────
    def to_problem(self, *, instance: Optional[str] = None, fallback_request_id: Optional[str] = None) -> Dict[str, Any]:
        """Return a dict matching our problem+json shape."""
        body: Dict[str, Any] = {
            "type": "about:blank",
            "title": self.__class__.__name__.replace("Exception", "") or "Error",
            "detail": self.message,
            "status": self.status_code,
            "code": self.code,
            "request_id": self.request_id or fallback_request_id or "N/A",
        }
        if instance:
            body["instance"] = instance
        if self.details is not None:
            body["details"] = self.details
        # Avoid leaking obvious secrets if someone passed them in `extra`.
        extra_sanitized = dict(self.extra) if self.extra else {}
        for k in ("token", "authorization", "password", "secret", "cookie"):
            extra_sanitized.pop(k, None)
        body.update(extra_sanitized)
        return body


# ──────────────────────────────────────────────────────────────
# 🔐 Authorization
# ──────────────────────────────────────────────────────────────
class AccessDeniedException(AppException):
    """Opaque authorization failure (403 by default, 401 for missing session/password)."""

    def __init__(self, *, status_code: int = status.HTTP_403_FORBIDDEN, request_id: Optional[str] = None) -> None:
        super().__init__(status_code=status_code, message=ACCESS_DENIED_MESSAGE, request_id=request_id)


# ──────────────────────────────────────────────────────────────
# 🔎 Not found (expected, transient states)
# ──────────────────────────────────────────────────────────────
class MediaNotFoundException(AppException):
    def __init__(self, message: str = "Media not found", *, request_id: Optional[str] = None) -> None:
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, message=message, request_id=request_id)


# ──────────────────────────────────────────────────────────────
# 🚦 Rate limiting
# ──────────────────────────────────────────────────────────────
class RateLimitedException(AppException):
    """429 with `Retry-After` and limit headers; body carries `retryAfter` seconds."""

    def __init__(self, *, message: str, retry_after: int, limit: int, request_id: Optional[str] = None) -> None:
        retry_after = max(1, int(retry_after))
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            message=message,
            request_id=request_id,
            extra={"retryAfter": retry_after},
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(int(limit)),
                "X-RateLimit-Remaining": "0",
            },
        )
        self.retry_after = retry_after
        self.limit = int(limit)


# ──────────────────────────────────────────────────────────────
# 🎞️ Streaming
# ──────────────────────────────────────────────────────────────
class RangeNotSatisfiableException(AppException):
    def __init__(self, *, size: int) -> None:
        super().__init__(
            status_code=416,
            message="Requested range not satisfiable",
            headers={"Content-Range": f"bytes */{int(size)}"},
        )


class ServiceUnavailableException(AppException):
    def __init__(self, message: str = "Service temporarily unavailable", *, retry_after: int = 5) -> None:
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            message=message,
            headers={"Retry-After": str(int(retry_after))},
        )
