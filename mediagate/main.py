# mediagate/main.py
from __future__ import annotations

"""
# MediaGate API — Application Entrypoint (FastAPI)

ASGI application factory and lifecycle for the secure media access service.

## Design Goals
- Deterministic, testable **app factory** (`create_app`) with explicit lifespan.
- Explicit **middleware order**:
  1) request id → 2) security headers/HTTPS → 3) CORS → 4) rate limits →
  5) strip `Server` header.
- No response compression: media bodies are already compressed and range
  responses must keep their exact `Content-Length`.
- Centralized problem+json exception handling.
- Graceful local/dev behavior (best-effort infra connections, never crash on import).

## Health checks
- `/healthz` — liveness (process up).
- `/readyz` — readiness (quick DB/Redis checks).
- `/metrics` — Prometheus exposition.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import FastAPI, Request
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import JSONResponse, Response

from mediagate.core import logger as _logsetup  # noqa: F401  (installs loguru sinks)
from mediagate.core.config import settings
from mediagate.core.exception_handlers import install_exception_handlers
from mediagate.core.limiter import install_rate_limiter, rate_limit_exempt
from mediagate.core.redis_client import redis_wrapper
from mediagate.db.session import async_engine, db_healthcheck
from mediagate.middleware.request_id import RequestIDMiddleware
from mediagate.security_headers import configure_cors, install_security

logger = logging.getLogger("mediagate")


# ─────────────────────────────────────────────────────────────────────────────
# 🔄 Lifespan: startup & shutdown
# ─────────────────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifecycle manager.

    Startup:
        - Best-effort connect to Redis (non-fatal; media routes answer 503 until it is up).

    Shutdown:
        - Dispose the DB async engine.
        - Close the Redis connection.
    """
    logger.info("✅ MediaGate API starting up")
    try:
        await redis_wrapper.connect()
    except Exception:
        logger.exception("Redis connect failed (continuing in degraded mode)")

    try:
        yield
    finally:
        try:
            await async_engine.dispose()
            logger.info("🛑 Database engine disposed")
        except Exception:
            logger.exception("Error disposing DB engine")
        try:
            await redis_wrapper.close()
        except Exception:
            logger.exception("Error closing Redis client")
        logger.info("🛑 MediaGate API shutting down")


# ─────────────────────────────────────────────────────────────────────────────
# 🏗️ App factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app() -> FastAPI:
    """
    Build and configure the FastAPI app instance.

    Returns:
        FastAPI: application with middleware, exception handlers, routers and
        health/readiness/metrics endpoints.
    """
    enable_docs = settings.ENABLE_DOCS
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        docs_url="/docs" if enable_docs else None,
        redoc_url="/redoc" if enable_docs else None,
        openapi_url="/openapi.json" if enable_docs else None,
        lifespan=lifespan,
    )

    # ── Middlewares (order matters) ─────────────────────────────────────────
    app.add_middleware(RequestIDMiddleware)  # 1) Correlation ID
    install_security(app)                    # 2) Security headers + optional HTTPS redirect
    configure_cors(app)                      # 3) CORS allow-list
    install_rate_limiter(app)                # 4) SlowAPI middleware + 429 handler

    # 5) Strip `Server` header at the end of the chain
    @app.middleware("http")
    async def _strip_server_header(request: Request, call_next: Callable) -> Response:
        response: Response = await call_next(request)
        if "server" in response.headers:
            del response.headers["server"]
        return response

    install_exception_handlers(app)

    # ── Routers ─────────────────────────────────────────────────────────────
    from mediagate.api.v1.routers import router as api_router

    app.include_router(api_router, prefix=settings.API_PREFIX)

    # ── Meta endpoints ──────────────────────────────────────────────────────
    @app.get("/healthz", tags=["meta"])
    @rate_limit_exempt()
    async def healthz() -> dict[str, bool]:
        """Liveness check. No external dependencies."""
        return {"ok": True}

    @app.get("/readyz", tags=["meta"])
    @rate_limit_exempt()
    async def readyz() -> JSONResponse:
        """Readiness check (Redis PING + DB `SELECT 1`)."""
        redis_ok = await redis_wrapper.is_connected()
        if not redis_ok:
            try:
                await redis_wrapper.connect()
                redis_ok = await redis_wrapper.is_connected()
            except Exception:
                redis_ok = False
        db_ok = await db_healthcheck()
        ready = bool(db_ok and redis_ok)
        return JSONResponse(
            {"ready": ready, "checks": {"db": db_ok, "redis": redis_ok}},
            status_code=200 if ready else 503,
        )

    @app.get("/metrics", include_in_schema=False)
    @rate_limit_exempt()
    async def metrics() -> Response:
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


# ─────────────────────────────────────────────────────────────────────────────
# 🚀 Module-level ASGI app for Uvicorn/Gunicorn
# ─────────────────────────────────────────────────────────────────────────────
app = create_app()
__all__ = ["create_app", "app"]


# Local dev runner (prefer: `uvicorn mediagate.main:app --reload`)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "mediagate.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "1") == "1",
        workers=int(os.getenv("WORKERS", "1")),
        log_level=os.getenv("LOG_LEVEL", "info"),
    )
