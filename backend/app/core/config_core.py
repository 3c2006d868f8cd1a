# -*- coding: utf-8 -*-
# backend/app/core/config_core.py
# =============================================================================
# Purpose:
#   • Single configuration module of the brainboard leaderboard service
#     (FastAPI + SQLAlchemy async).
#   • Source of truth for DB, auth-cookie, leaderboard and warmer settings.
#
# Invariants:
#   1) Secrets come only from ENV / .env, never from code.
#   2) DATABASE_URL is normalised to an async driver:
#        postgres:// | postgresql://  → postgresql+asyncpg://
#        sqlite://                    → sqlite+aiosqlite://
#   3) Ranking parameters (topN, version, TTL, hideGuests, weeklyEnabled) are
#      NOT settings: they live in the "leaderboard" feature flag and are read
#      per request (see services/leaderboard_service.py).
#
# Self-check:
#   • initialize_runtime() validates the DSN and warns about missing secrets.
#   • debug_dump() gives a secret-free summary for /health and startup logs.
# =============================================================================

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# Local helpers
# =============================================================================


def _parse_csv(value: object) -> List[str]:
    """'a, b,c' → ['a', 'b', 'c']."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(x).strip() for x in value if str(x).strip()]
    s = str(value).strip()
    if not s:
        return []
    return [item.strip() for item in s.split(",") if item.strip()]


def _unique(items: Iterable[str]) -> List[str]:
    out: List[str] = []
    for item in items:
        if item not in out:
            out.append(item)
    return out


# =============================================================================
# Field descriptions (shown in Settings.model_json_schema())
# =============================================================================


class _Doc:
    # Application
    PROJECT_NAME = "Service name (shown in logs and /health)."
    ENV = "Environment: production/dev/local/test (normalised to prod/dev/local/test)."
    DEBUG = "Verbose logs and SQL echo (dev/local only)."
    APP_VERSION = "Application version (reported by /health)."
    APP_HOST = "uvicorn bind address."
    APP_PORT = "uvicorn port."
    APP_RELOAD = "uvicorn auto-reload (development)."
    API_PREFIX = "Prefix of the REST API, e.g. /api."
    CORS_ORIGINS = "Allowed CORS origins (CSV)."

    # Database
    DATABASE_URL = (
        "PostgreSQL DSN (converted to postgresql+asyncpg://). "
        "sqlite:// URLs are accepted for local runs and tests."
    )
    DB_POOL_SIZE = "SQLAlchemy pool size (ignored for SQLite)."
    DB_MAX_OVERFLOW = "Extra connections above the pool size (ignored for SQLite)."
    DB_STATEMENT_TIMEOUT_MS = (
        "statement_timeout applied inside the snapshot rebuild transaction (ms)."
    )

    # Auth
    AUTH_SECRET = (
        "Shared HMAC secret used by the auth service to sign session cookies "
        "(env: AUTH_SECRET or BETTER_AUTH_SECRET)."
    )
    SESSION_COOKIE_NAME = (
        "Session cookie name; the '__Secure-' variant is accepted as well."
    )

    # Leaderboard
    LEADERBOARD_FLAG_KEY = "feature_flags.key holding the leaderboard config."
    LOCK_BACKEND = (
        "Advisory lock implementation: auto | advisory (PostgreSQL) | table "
        "(SELECT ... FOR UPDATE SKIP LOCKED on advisory_locks)."
    )

    # Warmer
    LEADERBOARD_WARMER_ENABLED = "Run the snapshot warmer inside the API process."
    LEADERBOARD_WARM_INTERVAL_SECONDS = "Pause between warmer passes (seconds)."

    # Logging
    LOG_LEVEL = "Root log level (DEBUG/INFO/WARNING/ERROR)."


# =============================================================================
# Settings
# =============================================================================


class Settings(BaseSettings):
    """
    Environment container of the leaderboard service.

    Notes:
      • Secrets are read from ENV only.
      • Per-request ranking config is not here: it is a feature-flag payload.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ------------------------------- APPLICATION -----------------------------
    PROJECT_NAME: str = Field("brainboard", description=_Doc.PROJECT_NAME)
    ENV: str = Field("production", description=_Doc.ENV)
    DEBUG: bool = Field(False, description=_Doc.DEBUG)
    APP_VERSION: str = Field("1.0.0", description=_Doc.APP_VERSION)

    APP_HOST: str = Field("0.0.0.0", description=_Doc.APP_HOST)
    APP_PORT: int = Field(8000, description=_Doc.APP_PORT)
    APP_RELOAD: bool = Field(False, description=_Doc.APP_RELOAD)
    API_PREFIX: str = Field("/api", description=_Doc.API_PREFIX)
    CORS_ORIGINS: str = Field(
        "http://localhost:5173,http://localhost:3000",
        description=_Doc.CORS_ORIGINS,
    )

    # -------------------------------- DATABASE -------------------------------
    DATABASE_URL: Optional[str] = Field(None, description=_Doc.DATABASE_URL)
    DB_POOL_SIZE: int = Field(10, description=_Doc.DB_POOL_SIZE)
    DB_MAX_OVERFLOW: int = Field(10, description=_Doc.DB_MAX_OVERFLOW)
    DB_STATEMENT_TIMEOUT_MS: int = Field(
        5000,
        description=_Doc.DB_STATEMENT_TIMEOUT_MS,
    )

    # ---------------------------------- AUTH ---------------------------------
    AUTH_SECRET: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("AUTH_SECRET", "BETTER_AUTH_SECRET"),
        description=_Doc.AUTH_SECRET,
    )
    SESSION_COOKIE_NAME: str = Field(
        "better-auth.session_token",
        description=_Doc.SESSION_COOKIE_NAME,
    )

    # ------------------------------- LEADERBOARD -----------------------------
    LEADERBOARD_FLAG_KEY: str = Field(
        "leaderboard",
        description=_Doc.LEADERBOARD_FLAG_KEY,
    )
    LOCK_BACKEND: str = Field("auto", description=_Doc.LOCK_BACKEND)

    # --------------------------------- WARMER --------------------------------
    LEADERBOARD_WARMER_ENABLED: bool = Field(
        False,
        description=_Doc.LEADERBOARD_WARMER_ENABLED,
    )
    LEADERBOARD_WARM_INTERVAL_SECONDS: int = Field(
        45,
        description=_Doc.LEADERBOARD_WARM_INTERVAL_SECONDS,
    )

    # --------------------------------- LOGGING -------------------------------
    LOG_LEVEL: str = Field("INFO", description=_Doc.LOG_LEVEL)

    # =============================== VALIDATORS ==============================

    @field_validator("AUTH_SECRET", mode="before")
    @classmethod
    def v_auth_secret(cls, value: object) -> Optional[str]:
        """Blank secret means 'not configured'."""
        if value is None:
            return None
        s = str(value).strip()
        return s or None

    @field_validator("LOCK_BACKEND", mode="before")
    @classmethod
    def v_lock_backend(cls, value: object) -> str:
        s = str(value or "auto").strip().lower()
        if s not in ("auto", "advisory", "table"):
            raise ValueError("LOCK_BACKEND must be one of: auto, advisory, table")
        return s

    @field_validator("LEADERBOARD_WARM_INTERVAL_SECONDS")
    @classmethod
    def v_warm_interval(cls, value: int) -> int:
        if value < 5:
            raise ValueError("LEADERBOARD_WARM_INTERVAL_SECONDS must be >= 5")
        return value

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def v_log_level(cls, value: object) -> str:
        s = str(value or "INFO").strip().upper()
        if s not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            return "INFO"
        return s

    # ============================== PROPERTIES ===============================

    @property
    def env_normalized(self) -> str:
        """Normalise ENV to one of: prod/dev/local/test."""
        value = (self.ENV or "").strip().lower()
        if value.startswith("prod"):
            return "prod"
        if value.startswith("dev"):
            return "dev"
        if value.startswith("loc"):
            return "local"
        if value.startswith("test"):
            return "test"
        return "prod"

    # ---- Database / DSN ----
    def database_url_async(self) -> str:
        """
        DSN for SQLAlchemy async:
          postgres://   → postgresql+asyncpg://
          postgresql:// → postgresql+asyncpg:// (when no driver is given)
          sqlite://     → sqlite+aiosqlite://   (when no driver is given)
        """
        if not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL is not set (PostgreSQL DSN expected).")
        url = self.DATABASE_URL
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("sqlite://"):
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url

    # ---- CORS ----
    def effective_cors_origins(self) -> List[str]:
        return _unique(_parse_csv(self.CORS_ORIGINS))

    # ---- Diagnostics ----
    def assert_required_secrets(self) -> None:
        """Soft self-check: print warnings, never fail startup."""
        if not self.DATABASE_URL:
            print("[WARN] DATABASE_URL is not set; the database is unavailable.")
        if not self.AUTH_SECRET:
            print(
                "[WARN] AUTH_SECRET is not set: every session cookie will be "
                "rejected as unauthorized.",
            )

    def debug_dump(self) -> Dict[str, str]:
        """Secret-free summary for /health and logs."""
        return {
            "env": self.env_normalized,
            "projectName": self.PROJECT_NAME,
            "version": self.APP_VERSION,
            "apiPrefix": self.API_PREFIX,
            "dbUrlSet": "yes" if bool(self.DATABASE_URL) else "no",
            "authSecretSet": "yes" if bool(self.AUTH_SECRET) else "no",
            "lockBackend": self.LOCK_BACKEND,
            "flagKey": self.LEADERBOARD_FLAG_KEY,
            "warmerEnabled": str(self.LEADERBOARD_WARMER_ENABLED),
            "corsCount": str(len(self.effective_cors_origins())),
        }

    # ---- Runtime init ----
    def ensure_local_artifacts(self) -> None:
        if self.env_normalized == "local":
            Path(".local_artifacts").mkdir(exist_ok=True)

    def initialize_runtime(self) -> None:
        """
        Single startup hook:
          • DSN is converted once (fails fast on garbage);
          • local artifacts folder for dev;
          • soft secret self-check.
        """
        if self.DATABASE_URL:
            _ = self.database_url_async()
        self.ensure_local_artifacts()
        self.assert_required_secrets()


# =============================================================================
# Settings singleton
# =============================================================================


@lru_cache()
def get_settings() -> Settings:
    """Build and cache Settings, running initialize_runtime() once."""
    settings_obj = Settings()
    settings_obj.initialize_runtime()
    return settings_obj


# from backend.app.core.config_core import settings
settings: Settings = get_settings()

__all__ = ["Settings", "get_settings", "settings"]
