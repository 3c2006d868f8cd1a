# -*- coding: utf-8 -*-
# backend/app/core/logging_core.py
# =============================================================================
# Purpose:
#   Central logging setup of the leaderboard service:
#   • formatters and handlers;
#   • correlation context (request_id, user_id) via contextvars;
#   • secret redaction;
#   • small helpers for modules (get_logger / logger_with).
#
# Rules:
#   • prod → JSON lines (python-json-logger), dev/local/test → readable lines.
#   • Every record carries env, svc, rid, uid.
#   • Filters and formatters never raise into the caller.
#   • Session tokens, cookie values and the signing secret are never logged.
# =============================================================================

from __future__ import annotations

import contextvars
import logging
import sys
import uuid
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

from pythonjsonlogger.json import JsonFormatter

from backend.app.core.config_core import get_settings

ASGIApp = Callable[
    [Mapping[str, Any], Callable[..., Awaitable[Any]], Callable[..., Awaitable[Any]]],
    Awaitable[Any],
]


# -----------------------------------------------------------------------------
# Correlation context
# -----------------------------------------------------------------------------
_rid_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "rid",
    default=None,
)  # request_id
_uid_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "uid",
    default=None,
)  # user_id of the verified session


def set_request_context(
    *,
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> None:
    """
    Bind correlation fields to the current task.

    The middleware sets request_id; the session verifier adds user_id once
    a cookie has been verified.
    """
    if request_id is not None:
        _rid_var.set(str(request_id))
    if user_id is not None:
        _uid_var.set(str(user_id))


def clear_request_context() -> None:
    _rid_var.set(None)
    _uid_var.set(None)


# -----------------------------------------------------------------------------
# Filters
# -----------------------------------------------------------------------------
class ContextFilter(logging.Filter):
    """
    Adds structured fields to each record:
      • env  normalised environment;
      • svc  service name (PROJECT_NAME);
      • rid  request id;
      • uid  user id, when known.
    """

    def __init__(self, env: str, service: str) -> None:
        super().__init__()
        self._env = env
        self._svc = service

    def filter(self, record: logging.LogRecord) -> bool:
        # Values set explicitly via extra= win.
        if not hasattr(record, "env"):
            record.env = self._env
        if not hasattr(record, "svc"):
            record.svc = self._svc
        if not hasattr(record, "rid"):
            record.rid = _rid_var.get() or "-"
        if not hasattr(record, "uid"):
            record.uid = _uid_var.get() or "-"
        return True


class RedactingFilter(logging.Filter):
    """
    Masks the literal values of configured secrets in message and args.

    Matching is by value, not by key name, so a DSN or secret that ends up
    inside an exception message is masked as well.
    """

    MASK = "****"
    SECRET_KEYS: Tuple[str, ...] = (
        "AUTH_SECRET",
        "DATABASE_URL",
    )

    def __init__(self, settings_obj: object) -> None:
        super().__init__()
        self._secrets: list[str] = []
        for key in self.SECRET_KEYS:
            val = getattr(settings_obj, key, None)
            if val and isinstance(val, str):
                self._secrets.append(val)

    def _redact_text(self, text: str) -> str:
        if not text:
            return text
        redacted = text
        for secret in self._secrets:
            if secret in redacted:
                redacted = redacted.replace(secret, self.MASK)
        return redacted

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if not self._secrets:
            return True
        try:
            if isinstance(record.msg, str):
                record.msg = self._redact_text(record.msg)
            if isinstance(record.args, tuple):
                record.args = tuple(
                    self._redact_text(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )
        except (TypeError, ValueError):
            # Never block a log record because of redaction.
            pass
        return True


# -----------------------------------------------------------------------------
# Formatters
# -----------------------------------------------------------------------------
class DevFormatter(logging.Formatter):
    """
    Readable format for dev/local/test:

    2026-01-10 12:00:00 | INFO     | brainboard | backend.app... | rid=... uid=... | msg
    """

    def __init__(self) -> None:
        super().__init__(
            fmt=(
                "%(asctime)s | %(levelname)-8s | %(svc)s | %(name)s | "
                "rid=%(rid)s uid=%(uid)s | %(message)s"
            ),
            datefmt="%Y-%m-%d %H:%M:%S",
        )


class ServiceJsonFormatter(JsonFormatter):
    """
    JSON lines for prod:

        {"time", "level", "service", "logger", "env", "rid", "uid", "msg",
         ...extra fields}
    """

    RENAMES = {
        "asctime": "time",
        "levelname": "level",
        "svc": "service",
        "name": "logger",
        "message": "msg",
    }

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)s %(svc)s %(name)s %(env)s %(rid)s %(uid)s %(message)s",
        )

    def process_log_record(self, log_record: Dict[str, Any]) -> Dict[str, Any]:
        base = super().process_log_record(log_record)
        return {self.RENAMES.get(key, key): value for key, value in base.items()}


# -----------------------------------------------------------------------------
# Setup
# -----------------------------------------------------------------------------
def setup_logging() -> None:
    """
    Configure the root logger:

      • console handler (stdout), plus a file handler in local env;
      • context and redaction filters;
      • uvicorn/fastapi loggers propagate into root;
      • SQLAlchemy engine logging in DEBUG.
    """
    settings = get_settings()
    env = settings.env_normalized
    debug = bool(settings.DEBUG)
    service = settings.PROJECT_NAME

    root = logging.getLogger()
    root.handlers.clear()
    level = logging.DEBUG if debug else logging.getLevelName(settings.LOG_LEVEL)
    root.setLevel(level)

    ctx_filter = ContextFilter(env=env, service=service)
    redact_filter = RedactingFilter(settings_obj=settings)

    console_handler = logging.StreamHandler(sys.stdout)
    if env == "prod":
        formatter: logging.Formatter = ServiceJsonFormatter()
    else:
        formatter = DevFormatter()
    console_handler.setFormatter(formatter)
    console_handler.addFilter(ctx_filter)
    console_handler.addFilter(redact_filter)
    root.addHandler(console_handler)

    if env == "local":
        logs_dir = Path(".local_artifacts") / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(logs_dir / "app.log", encoding="utf-8")
        file_handler.setFormatter(DevFormatter())
        file_handler.addFilter(ctx_filter)
        file_handler.addFilter(redact_filter)
        root.addHandler(file_handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi"):
        lg = logging.getLogger(name)
        lg.handlers.clear()
        lg.setLevel(level)
        lg.propagate = True

    if debug:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={"details": {"env": env, "debug": debug, "level": logging.getLevelName(level)}},
    )


def get_logger(name: Optional[str] = None, **extra: Any) -> logging.Logger:
    """
    Logger by name, optionally wrapped in a LoggerAdapter with bound fields:

        log = get_logger(__name__, component="warmer")
    """
    base = logging.getLogger(name)
    if not extra:
        return base
    return logging.LoggerAdapter(base, extra)  # type: ignore[return-value]


def logger_with(logger: logging.Logger, **extra: Any) -> logging.Logger:
    """Bind extra fields to an existing logger: log = logger_with(log, kind=kind)."""
    return logging.LoggerAdapter(logger, extra)  # type: ignore[return-value]


# -----------------------------------------------------------------------------
# ASGI middleware
# -----------------------------------------------------------------------------
class CorrelationIdMiddleware:
    """
    Propagates X-Request-ID (or generates a uuid4 hex) into contextvars and
    echoes it back on the response.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(
        self,
        scope: Mapping[str, Any],
        receive: Callable[..., Awaitable[Any]],
        send: Callable[..., Awaitable[Any]],
    ) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        headers: Dict[str, str] = {
            key.decode("latin-1").lower(): value.decode("latin-1")
            for key, value in (scope.get("headers") or [])
        }
        rid = headers.get("x-request-id") or uuid.uuid4().hex
        set_request_context(request_id=rid)

        async def send_wrapper(message: Mapping[str, Any]) -> None:
            if message.get("type") == "http.response.start":
                headers_list: list[Tuple[bytes, bytes]] = list(
                    message.get("headers") or [],
                )
                headers_list.append((b"x-request-id", rid.encode("latin-1")))
                new_message: Dict[str, Any] = dict(message)
                new_message["headers"] = headers_list
                await send(new_message)
                return
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            clear_request_context()


# Configured once on import.
setup_logging()

__all__ = [
    "setup_logging",
    "get_logger",
    "logger_with",
    "set_request_context",
    "clear_request_context",
    "ContextFilter",
    "RedactingFilter",
    "DevFormatter",
    "ServiceJsonFormatter",
    "CorrelationIdMiddleware",
]
