# -*- coding: utf-8 -*-
# backend/app/core/errors_core.py
# =============================================================================
# Purpose:
#   • Domain error layer of the leaderboard service.
#   • Stable machine codes for the frontend and for logs.
#   • Uniform JSON error bodies {"error": code, "message": text} for FastAPI.
#
# Rules:
#   • Services and routes raise only AppError subclasses from this module.
#   • Clients never see stack traces, DSNs, cookies or secrets.
#   • Configuration absence (no flag row, no secret) maps to 503/401, never 500.
#   • Unknown exceptions are logged with stack trace and mapped to a bare
#     500 internal_error.
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, cast

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.app.core.logging_core import get_logger

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Base domain error
# -----------------------------------------------------------------------------
@dataclass(eq=False)
class AppError(Exception):
    """
    Base domain exception.

    Fields:
      • code         stable snake_case machine code;
      • message      short client-safe message;
      • http_status  default HTTP status;
      • details      optional client-safe details.
    """

    code: str
    message: str
    http_status: int = status.HTTP_400_BAD_REQUEST
    details: Dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


# -----------------------------------------------------------------------------
# Leaderboard errors
# -----------------------------------------------------------------------------
class UnauthorizedError(AppError):
    """No verified session (missing/invalid cookie, expired session, no secret)."""

    def __init__(
        self,
        message: str = "Authentication required.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="unauthorized",
            message=message,
            http_status=status.HTTP_401_UNAUTHORIZED,
            details=details or {},
        )


class LoginRequiredError(AppError):
    """Guests are hidden by the leaderboard config; a session is mandatory."""

    def __init__(
        self,
        message: str = "Sign in to view the leaderboard.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="login_required",
            message=message,
            http_status=status.HTTP_401_UNAUTHORIZED,
            details=details or {},
        )


class InvalidScopeError(AppError):
    """Unsupported scope, or the weekly scope while it is switched off."""

    def __init__(
        self,
        message: str = "Unsupported leaderboard scope.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="invalid_scope",
            message=message,
            http_status=status.HTTP_400_BAD_REQUEST,
            details=details or {},
        )


class ServiceDisabledError(AppError):
    """The leaderboard feature flag is missing or disabled."""

    def __init__(
        self,
        message: str = "Leaderboard is disabled.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="leaderboard_disabled",
            message=message,
            http_status=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details or {},
        )


class ServerBusyError(AppError):
    """Snapshot rebuild was skipped or failed and no snapshot exists yet."""

    def __init__(
        self,
        message: str = "Leaderboard is being computed, retry shortly.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="server_busy",
            message=message,
            http_status=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details or {},
        )


class UserNotFoundError(AppError):
    """User row disappeared after the session was verified."""

    def __init__(
        self,
        message: str = "User not found.",
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            code="user_not_found",
            message=message,
            http_status=status.HTTP_404_NOT_FOUND,
            details=details or {},
        )


# -----------------------------------------------------------------------------
# Exception → (status_code, payload)
# -----------------------------------------------------------------------------
_HTTP_CODES: Dict[int, str] = {
    status.HTTP_400_BAD_REQUEST: "bad_request",
    status.HTTP_401_UNAUTHORIZED: "unauthorized",
    status.HTTP_403_FORBIDDEN: "forbidden",
    status.HTTP_404_NOT_FOUND: "not_found",
    status.HTTP_405_METHOD_NOT_ALLOWED: "method_not_allowed",
}


def normalize_exception(
    exc: BaseException,
) -> Tuple[int, Dict[str, Any]]:
    """
    Map any exception to a canonical HTTP answer:

      • AppError                → its http_status + to_payload();
      • RequestValidationError  → 400 bad_request (+ field locations);
      • HTTPException           → its status + mapped code (not_found, ...);
      • anything else           → 500 internal_error, no details.
    """
    if isinstance(exc, AppError):
        return exc.http_status, exc.to_payload()

    if isinstance(exc, RequestValidationError):
        fields = [
            ".".join(str(part) for part in err.get("loc", ()))
            for err in exc.errors()
        ]
        return (
            status.HTTP_400_BAD_REQUEST,
            {
                "error": "bad_request",
                "message": "Malformed query parameters.",
                "details": {"fields": fields},
            },
        )

    if isinstance(exc, StarletteHTTPException):
        if isinstance(exc.detail, str):
            msg = exc.detail
        elif isinstance(exc.detail, dict):
            detail = cast(Dict[str, Any], exc.detail)
            msg = str(detail.get("message") or detail.get("detail") or "HTTP error.")
        else:
            msg = "HTTP error."
        return exc.status_code, {
            "error": _HTTP_CODES.get(exc.status_code, "http_error"),
            "message": msg,
        }

    logger.exception("Unhandled exception", exc_info=exc, extra={"error_type": type(exc).__name__})
    return (
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {
            "error": "internal_error",
            "message": "Internal server error.",
        },
    )


# -----------------------------------------------------------------------------
# FastAPI handlers
# -----------------------------------------------------------------------------
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    status_code, payload = normalize_exception(exc)
    logger.warning(
        "AppError handled",
        extra={"path": request.url.path, "error": exc.code, "status": status_code},
    )
    headers = {"Cache-Control": "no-store"}
    return JSONResponse(status_code=status_code, content=payload, headers=headers)


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    status_code, payload = normalize_exception(exc)
    return JSONResponse(
        status_code=status_code,
        content=payload,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    status_code, payload = normalize_exception(exc)
    logger.info(
        "Rejected malformed request",
        extra={"path": request.url.path, "status": status_code},
    )
    return JSONResponse(status_code=status_code, content=payload)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: stack trace goes to the log, internal_error goes to the client."""
    status_code, payload = normalize_exception(exc)
    logger.error(
        "Unhandled exception handled by generic handler",
        extra={
            "path": request.url.path,
            "status": status_code,
            "exc_type": type(exc).__name__,
        },
    )
    return JSONResponse(status_code=status_code, content=payload)


def setup_exception_handlers(app: FastAPI) -> None:
    """
    Register all handlers; call once from create_app():

        app = FastAPI(...)
        setup_exception_handlers(app)
    """
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
    logger.info("Exception handlers registered for AppError/HTTPException/Exception")


__all__ = [
    "AppError",
    "UnauthorizedError",
    "LoginRequiredError",
    "InvalidScopeError",
    "ServiceDisabledError",
    "ServerBusyError",
    "UserNotFoundError",
    "normalize_exception",
    "setup_exception_handlers",
]
