from __future__ import annotations

"""
Problem+JSON exception handlers (RFC 7807).

Wired by `mediagate/main.py`. All HTTP errors are rendered as
application/problem+json with a stable schema; `AppException` subclasses use
their own `to_problem()` body and keep their headers (`Retry-After`,
`Content-Range`, ...).
"""

import logging

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from mediagate.core.exceptions import AppException
from mediagate.middleware.request_id import get_request_id

logger = logging.getLogger(__name__)

PROBLEM_MEDIA_TYPE = "application/problem+json"


def _problem(title: str, detail: str, status_code: int, request: Request, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "type": "about:blank",
            "title": title,
            "detail": detail,
            "status": status_code,
            "instance": str(request.url.path),
            "request_id": get_request_id(request) or "N/A",
        },
        headers=headers,
        media_type=PROBLEM_MEDIA_TYPE,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:  # type: ignore
    if isinstance(exc, AppException):
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_problem(instance=str(request.url.path), fallback_request_id=get_request_id(request)),
            headers=exc.headers,
            media_type=PROBLEM_MEDIA_TYPE,
        )
    title = exc.__class__.__name__.replace("Exception", "").strip() or "Error"
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return _problem(title, detail, exc.status_code, request, headers=getattr(exc, "headers", None))


def _public_errors(exc: RequestValidationError) -> list:
    """Validation errors without the offending `input` (it may be a token or a secret)."""
    errors = []
    for err in exc.errors():
        item = {k: v for k, v in err.items() if k not in ("input", "ctx", "url")}
        ctx = err.get("ctx")
        if isinstance(ctx, dict):
            item["ctx"] = {k: v for k, v in ctx.items() if isinstance(v, (str, int, float, bool))}
        errors.append(item)
    return errors


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:  # type: ignore
    detail = "Validation error"
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "type": "about:blank",
            "title": detail,
            "detail": detail,
            "status": status.HTTP_422_UNPROCESSABLE_ENTITY,
            "instance": str(request.url.path),
            "errors": _public_errors(exc),
        },
        media_type=PROBLEM_MEDIA_TYPE,
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # type: ignore
    # Hide internals; the stack trace goes to the log only.
    logger.exception("Unhandled error on %s", request.url.path)
    return _problem(
        "Internal Server Error",
        "An unexpected error occurred.",
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        request,
    )


def install_exception_handlers(app) -> None:
    """Register the problem+json handlers on a FastAPI app."""
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, global_exception_handler)  # type: ignore[arg-type]


__all__ = [
    "http_exception_handler",
    "validation_exception_handler",
    "global_exception_handler",
    "install_exception_handlers",
]
