# mediagate/middleware/request_id.py
from __future__ import annotations

"""
# MediaGate — Request ID Middleware (pure ASGI)

- Reuses a client-supplied `X-Request-ID` / `X-Correlation-ID` when it is a valid UUIDv4.
- Generates UUIDv4 when absent/invalid.
- Injects into `request.state.request_id` and the response header.
- Binds `request_id` into the **loguru** context for the whole request, so
  security events logged mid-stream stay correlated.

## Env / Config
- `REQUEST_ID_HEADER_NAME` (default: `X-Request-ID`)
- `REQUEST_ID_TRUST_CLIENT_IDS` ("true"/"false"; default: "true")

## Usage
    from mediagate.middleware.request_id import RequestIDMiddleware, get_request_id
    app.add_middleware(RequestIDMiddleware)
"""

import os
import re
import uuid

from loguru import logger
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Receive, Scope, Send

HEADER_NAME = os.getenv("REQUEST_ID_HEADER_NAME", "X-Request-ID")
TRUST_CLIENT_IDS = os.getenv("REQUEST_ID_TRUST_CLIENT_IDS", "true").lower() == "true"

_UUID_V4_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-4[0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}$")


class RequestIDMiddleware:
    """Lightweight ASGI middleware managing a per-request correlation ID."""

    def __init__(self, app: ASGIApp, header_name: str = HEADER_NAME) -> None:
        self.app = app
        self.header_name = header_name

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            return await self.app(scope, receive, send)

        req_id = self._choose_request_id(Headers(scope=scope))
        state = scope.setdefault("state", {})
        state["request_id"] = req_id
        name_bytes = self.header_name.encode("latin-1")

        async def _send_wrapper(message):
            if message.get("type") == "http.response.start":
                raw = message.setdefault("headers", [])
                message["headers"] = [(k, v) for (k, v) in raw if k.lower() != name_bytes.lower()]
                message["headers"].append((name_bytes, req_id.encode("latin-1")))
            return await send(message)

        with logger.contextualize(request_id=req_id):
            try:
                await self.app(scope, receive, _send_wrapper)
            except Exception:
                logger.exception("[RequestID] Unhandled exception during request processing")
                raise

    def _choose_request_id(self, headers: Headers) -> str:
        """Return a safe request id from headers or generate a UUIDv4."""
        if TRUST_CLIENT_IDS:
            incoming = headers.get(self.header_name) or headers.get("X-Correlation-ID")
            if incoming:
                candidate = incoming.strip()
                if _UUID_V4_RE.fullmatch(candidate):
                    return str(uuid.UUID(candidate))
        return str(uuid.uuid4())


def get_request_id(request) -> str:
    """Fetch the current request id from `request.state` ("" if absent)."""
    return getattr(getattr(request, "state", object()), "request_id", "") or ""


__all__ = ["RequestIDMiddleware", "get_request_id"]
