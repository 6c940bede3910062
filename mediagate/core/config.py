# mediagate/core/config.py
from __future__ import annotations

"""
# MediaGate — Centralized Configuration (Pydantic v2)

Single `settings` object with strongly-typed, environment-driven config.

## Goals
- Safe defaults for local/dev; explicit where prod needs secrets.
- CSV → list helpers for block/allow lists.
- Hotlink heuristics are **policy**, not code: every threshold lives here.
- Security-first defaults (short token TTLs, bounded stream chunks, admin surface
  closed unless `ADMIN_API_KEY` is set).

## Usage
    from mediagate.core.config import settings
"""

import logging
from typing import List, Literal, Optional

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger(__name__)
load_dotenv()  # harmless in prod; convenient in dev

HotlinkMode = Literal["BLOCK_STRICT", "LOG_ONLY", "DISABLED"]


# ─────────────────────────────────────────────────────────────
# Small helpers
# ─────────────────────────────────────────────────────────────
def _split_csv(v: str | None) -> list[str]:
    """Split a comma-separated string into a trimmed list (empty-safe)."""
    if not v:
        return []
    return [s.strip() for s in str(v).split(",") if s and s.strip()]


# ─────────────────────────────────────────────────────────────
# Settings
# ─────────────────────────────────────────────────────────────
class Settings(BaseSettings):
    """
    Global application settings sourced from environment.

    Security:
        - Token TTLs and stream chunk caps are bounded by validators.
        - `HOTLINK_PROTECTION` picks the enforcement mode; a `security_settings`
          row in the database may override it at runtime.

    Notes:
        - List-valued knobs accept CSV strings (`HOTLINK_BLOCKED_IPS=1.2.3.4,5.6.7.8`).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # don't crash on unknown keys
    )

    # ── App meta ──────────────────────────────────────────────
    PROJECT_NAME: str = "MediaGate API"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api"
    ENV: Literal["development", "staging", "production"] = "development"
    ENABLE_DOCS: bool = True

    # ── Redis ─────────────────────────────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"

    # ── Database (PostgreSQL) ─────────────────────────────────
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: SecretStr = Field(...)
    POSTGRES_DB: str = "mediagate"

    # ── Storage ───────────────────────────────────────────────
    STORAGE_ROOT: str = "/app/uploads"

    # ── Tokens ────────────────────────────────────────────────
    VIDEO_TOKEN_TTL_SECONDS: int = Field(15 * 60, ge=60, le=24 * 60 * 60)
    ARCHIVE_TOKEN_TTL_SECONDS: int = Field(15 * 60, ge=60, le=24 * 60 * 60)
    PHOTO_TOKEN_TTL_SECONDS: int = Field(60 * 60, ge=60, le=24 * 60 * 60)

    # ── Streaming ─────────────────────────────────────────────
    STREAM_MAX_CHUNK_BYTES: int = Field(10 * 1024 * 1024, ge=64 * 1024)
    STREAM_READ_BLOCK_BYTES: int = Field(512 * 1024, ge=4 * 1024)
    STREAM_CACHE_MAX_AGE: int = Field(3600, ge=0)
    STREAM_READ_WORKERS: int = Field(16, ge=1, le=256)
    PHOTO_CACHE_MAX_AGE: int = Field(3600, ge=0)

    # ── Rate limits (requests per window) ─────────────────────
    RATE_LIMIT_WINDOW_SECONDS: int = Field(60, ge=1)
    IP_RATE_LIMIT: int = Field(1000, ge=1)
    SESSION_RATE_LIMIT: int = Field(600, ge=1)
    ARCHIVE_IP_RATE_LIMIT: int = Field(30, ge=1)
    PHOTO_IP_RATE_LIMIT: int = Field(3000, ge=1)  # album grids fan out

    # ── Hotlink policy ────────────────────────────────────────
    HOTLINK_PROTECTION: HotlinkMode = "LOG_ONLY"
    HOTLINK_FREQUENCY_WINDOW_SECONDS: int = Field(300, ge=1)
    HOTLINK_FREQUENCY_THRESHOLD: int = Field(3000, ge=1)
    HOTLINK_FREQUENCY_LOG_EVERY: int = Field(500, ge=1)
    HOTLINK_IP_WINDOW_SECONDS: int = Field(300, ge=1)
    HOTLINK_MAX_IPS_PER_SESSION: int = Field(5, ge=0)  # 0 disables the check
    HOTLINK_BLOCKED_IPS: Optional[str] = None  # CSV
    HOTLINK_BLOCKED_DOMAINS: Optional[str] = None  # CSV
    HOTLINK_ALLOWED_REFERER_HOSTS: Optional[str] = None  # CSV

    # ── Tracking ──────────────────────────────────────────────
    TRACK_ANALYTICS: bool = True
    TRACK_SECURITY_LOGS: bool = True
    SECURITY_EVENTS_RECENT_MAX: int = Field(1000, ge=10, le=100_000)

    # ── Archives ──────────────────────────────────────────────
    ARCHIVE_RETRY_AFTER_MS: int = Field(5000, ge=500)
    ARCHIVE_GENERATION_DELAY_SECONDS: int = Field(10, ge=1)
    ARCHIVE_QUEUE_KEY: str = "queue:archive-generation"

    # ── Admin / proxy ─────────────────────────────────────────
    ADMIN_API_KEY: Optional[SecretStr] = None
    TRUST_FORWARD_HEADERS: bool = False

    # ── CORS ──────────────────────────────────────────────────
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"]
    )
    FRONTEND_ORIGINS: Optional[str] = None  # CSV

    # ── Validators / normalizers ──────────────────────────────
    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def _assemble_cors_origins(cls, v: str | List[str]):
        if isinstance(v, str):
            return _split_csv(v)
        return v

    @field_validator("HOTLINK_PROTECTION", mode="before")
    @classmethod
    def _normalize_mode(cls, v):
        return str(v or "LOG_ONLY").strip().upper()

    @field_validator("API_PREFIX", mode="before")
    @classmethod
    def _normalize_prefix(cls, v) -> str:
        s = "/" + str(v or "").strip().strip("/")
        return "" if s == "/" else s

    # ── Derived / convenience properties ─────────────────────
    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"

    @property
    def DATABASE_URL(self) -> str:
        """Sync-style DSN (kept for tooling)."""
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD.get_secret_value()}"
            f"@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def ASYNC_DATABASE_URL(self) -> str:
        """Async SQLAlchemy DSN."""
        return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")

    @property
    def hotlink_blocked_ips(self) -> List[str]:
        return _split_csv(self.HOTLINK_BLOCKED_IPS)

    @property
    def hotlink_blocked_domains(self) -> List[str]:
        return [d.lower() for d in _split_csv(self.HOTLINK_BLOCKED_DOMAINS)]

    @property
    def hotlink_allowed_referer_hosts(self) -> List[str]:
        return [d.lower() for d in _split_csv(self.HOTLINK_ALLOWED_REFERER_HOSTS)]

    @property
    def frontend_origins_list(self) -> List[str]:
        """
        Preferred CORS allowlist:
        Priority → FRONTEND_ORIGINS (CSV) → BACKEND_CORS_ORIGINS (typed list).
        """
        if self.FRONTEND_ORIGINS:
            return _split_csv(self.FRONTEND_ORIGINS)
        return [str(u).rstrip("/") for u in (self.BACKEND_CORS_ORIGINS or [])]

    @property
    def admin_api_key(self) -> Optional[str]:
        return self.ADMIN_API_KEY.get_secret_value() if self.ADMIN_API_KEY else None


# Singleton instance
settings = Settings()
