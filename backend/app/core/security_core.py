# -*- coding: utf-8 -*-
# backend/app/core/security_core.py
# =============================================================================
# Purpose:
#   Session verifier of the leaderboard service. The auth service signs the
#   session cookie as "<token>.<base64(HMAC-SHA256(secret, token))>"; here we:
#   • find the cookie in the request headers (plain or "__Secure-" name);
#   • check the signature shape and HMAC in constant time;
#   • resolve the token to a non-expired session and its user row.
#
# Rules:
#   • Any failure yields "no identity" (None). Callers decide whether that
#     is a 401 (unauthorized / login_required) or anonymous browsing.
#   • Malformed base64 and crypto errors are verification failures, not
#     exceptions.
#   • A missing secret disables verification entirely (logged at ERROR).
#   • Cookie values and tokens are never logged.
# =============================================================================

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple
from urllib.parse import unquote

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config_core import get_settings
from backend.app.core.logging_core import get_logger, set_request_context
from backend.app.core.utils_core import hmac_sha256_b64, utcnow
from backend.app.models.user_models import AuthSession, User

logger = get_logger(__name__)
settings = get_settings()

SECURE_PREFIX = "__Secure-"
SIGNATURE_LENGTH = 44  # base64 of a 32-byte SHA-256 digest


@dataclass(frozen=True)
class SessionUser:
    """Identity behind a verified session cookie."""

    id: str
    name: str
    image: Optional[str]
    xp: int
    brain_level: int
    brain_coins: int
    session_expires_at: Optional[datetime] = None


# -----------------------------------------------------------------------------
# Cookie header parsing
# -----------------------------------------------------------------------------
def extract_cookie_header(headers: Any) -> Optional[str]:
    """
    Cookie header from Starlette Headers, a plain dict or a list of pairs.

    Lookup is case-insensitive whatever the container is.
    """
    if headers is None:
        return None
    getter = getattr(headers, "get", None)
    if getter is not None:
        for name in ("cookie", "Cookie", "COOKIE"):
            value = getter(name)
            if value:
                return str(value)
    items = headers.items() if hasattr(headers, "items") else headers
    for key, value in items:
        if str(key).lower() == "cookie" and value:
            return str(value)
    return None


def parse_cookies(cookie_header: Optional[str]) -> Dict[str, str]:
    """'a=1; b=2=3' → {'a': '1', 'b': '2=3'}; first occurrence of a name wins."""
    cookies: Dict[str, str] = {}
    if not cookie_header:
        return cookies
    for part in cookie_header.split(";"):
        name, sep, value = part.strip().partition("=")
        if not sep or not name or name in cookies:
            continue
        cookies[name] = value
    return cookies


def find_session_cookie(
    cookies: Mapping[str, str],
    cookie_name: Optional[str] = None,
) -> Optional[str]:
    name = cookie_name or settings.SESSION_COOKIE_NAME
    raw = cookies.get(name) or cookies.get(f"{SECURE_PREFIX}{name}")
    if not raw:
        return None
    return unquote(raw)


# -----------------------------------------------------------------------------
# Signature
# -----------------------------------------------------------------------------
def split_signed_value(cookie_value: str) -> Optional[Tuple[str, str]]:
    """
    Split at the LAST '.' into (signed_value, signature).

    None when there is no '.' after position 0, or when the signature is not
    a 44-char '='-terminated base64 string.
    """
    idx = cookie_value.rfind(".")
    if idx < 1:
        return None
    signed_value, signature = cookie_value[:idx], cookie_value[idx + 1:]
    if len(signature) != SIGNATURE_LENGTH or not signature.endswith("="):
        return None
    return signed_value, signature


def verify_signature(signed_value: str, signature: str, secret: str) -> bool:
    try:
        provided = base64.b64decode(signature, validate=True)
    except (binascii.Error, ValueError):
        return False
    expected = hmac.new(
        secret.encode("utf-8"),
        signed_value.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return hmac.compare_digest(provided, expected)


def sign_session_token(token: str, secret: Optional[str] = None) -> str:
    """Cookie value for a session token, as the auth service produces it."""
    key = secret if secret is not None else settings.AUTH_SECRET
    if not key:
        raise RuntimeError("AUTH_SECRET is not configured")
    return f"{token}.{hmac_sha256_b64(key, token)}"


def verify_cookie_value(cookie_value: str, secret: str) -> Optional[str]:
    """Session token if the cookie value is correctly signed, else None."""
    parts = split_signed_value(cookie_value)
    if parts is None:
        return None
    signed_value, signature = parts
    if not verify_signature(signed_value, signature, secret):
        return None
    return signed_value


# -----------------------------------------------------------------------------
# Full verification
# -----------------------------------------------------------------------------
async def verify_session(
    db: AsyncSession,
    headers: Any,
    *,
    secret: Optional[str] = None,
    cookie_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[SessionUser]:
    """
    Resolve the request's session cookie to a SessionUser.

    Returns None when the secret is unconfigured, the cookie is missing or
    malformed, the HMAC does not match, or no non-expired session exists.
    """
    key = secret if secret is not None else settings.AUTH_SECRET
    if not key:
        logger.error("AUTH_SECRET is not configured; session cookies are rejected")
        return None

    cookie_value = find_session_cookie(
        parse_cookies(extract_cookie_header(headers)),
        cookie_name,
    )
    if not cookie_value:
        return None

    token = verify_cookie_value(cookie_value, key)
    if token is None:
        logger.info("Session cookie rejected: bad signature")
        return None

    moment = now or utcnow()
    row = (
        await db.execute(
            select(AuthSession.expires_at, User)
            .join(User, User.id == AuthSession.user_id)
            .where(AuthSession.token == token, AuthSession.expires_at > moment)
            .limit(1)
        )
    ).first()
    if row is None:
        logger.info("Session cookie rejected: no active session")
        return None

    expires_at, user = row
    set_request_context(user_id=user.id)
    return SessionUser(
        id=user.id,
        name=user.name,
        image=user.image,
        xp=int(user.xp or 0),
        brain_level=int(user.brain_level or 1),
        brain_coins=int(user.brain_coins or 0),
        session_expires_at=expires_at,
    )


__all__ = [
    "SessionUser",
    "extract_cookie_header",
    "parse_cookies",
    "find_session_cookie",
    "split_signed_value",
    "verify_signature",
    "sign_session_token",
    "verify_cookie_value",
    "verify_session",
]
