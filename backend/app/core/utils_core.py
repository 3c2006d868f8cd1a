# -*- coding: utf-8 -*-
# backend/app/core/utils_core.py
# =============================================================================
# Purpose:
#   • Core helpers with no FastAPI/SQLAlchemy dependency.
#   • UTC time, ISO-8601 formatting/parsing, ISO week window.
#   • Lenient numeric coercion for JSON config payloads.
#   • Hashes / HMAC.
#
# Rules:
#   • All functions are pure; datetimes returned are timezone-aware UTC.
#   • Garbage input (NaN, inf, junk strings) yields the supplied default,
#     never an exception.
# =============================================================================

from __future__ import annotations

import base64
import hashlib
import hmac
import math
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional, Tuple, Union


# -----------------------------------------------------------------------------
# Time
# -----------------------------------------------------------------------------
def utcnow() -> datetime:
    """Current time in UTC with tzinfo=UTC."""
    return datetime.now(tz=timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC (SQLite returns them naive)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def iso_utc(value: datetime) -> str:
    """ISO-8601 with milliseconds and a 'Z' suffix: 2026-01-05T10:00:00.000Z."""
    return to_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso_datetime(raw: Optional[str]) -> Optional[datetime]:
    """
    Lenient ISO parser; None on empty or malformed input.

    Accepts "2026-01-05", "2026-01-05T10:00:00", "2026-01-05T10:00:00.000Z".
    """
    if not raw or not isinstance(raw, str):
        return None
    candidate = raw.strip()
    if "T" not in candidate and ":" not in candidate and " " not in candidate:
        candidate = f"{candidate}T00:00:00"
    try:
        return to_utc(datetime.fromisoformat(candidate.replace("Z", "+00:00")))
    except ValueError:
        return None


def unix_ms(value: datetime) -> int:
    return int(to_utc(value).timestamp() * 1000)


def week_window(now: datetime) -> Tuple[datetime, datetime]:
    """
    ISO week containing `now`: [Monday 00:00 UTC, next Monday 00:00 UTC).

    Computed from the UTC calendar date, whatever the server timezone is.
    """
    today: date = to_utc(now).date()
    monday = today - timedelta(days=today.weekday())
    start = datetime.combine(monday, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=7)


# -----------------------------------------------------------------------------
# Numeric coercion (JSON payloads edited by hand in the admin panel)
# -----------------------------------------------------------------------------
def as_number(value: Any) -> Optional[float]:
    """
    Number from int/float/numeric string; None for bool, None, NaN, inf
    or anything unparsable.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        num = float(value)
    elif isinstance(value, str):
        try:
            num = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(num) or math.isinf(num):
        return None
    return num


def as_int(value: Any, default: int) -> int:
    """
    Integer part of a number; `default` when missing, unparsable or zero.
    """
    num = as_number(value)
    if num is None:
        return default
    result = math.floor(num)
    return result if result != 0 else default


def clamp_int(value: int, min_value: int, max_value: int) -> int:
    return max(min_value, min(max_value, value))


def as_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        s = value.strip().lower()
        if s in ("1", "true", "yes", "on"):
            return True
        if s in ("0", "false", "no", "off", ""):
            return False
    if isinstance(value, (int, float)):
        return bool(value)
    return default


# -----------------------------------------------------------------------------
# Hashes / HMAC
# -----------------------------------------------------------------------------
def sha256_hex(data: Union[str, bytes]) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def hmac_sha256_b64(
    secret: Union[str, bytes],
    message: Union[str, bytes],
) -> str:
    """Standard base64 of HMAC-SHA256 (44 chars, '=' padded)."""
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    if isinstance(message, str):
        message = message.encode("utf-8")
    digest = hmac.new(secret, message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


__all__ = [
    "utcnow",
    "to_utc",
    "iso_utc",
    "parse_iso_datetime",
    "unix_ms",
    "week_window",
    "as_number",
    "as_int",
    "clamp_int",
    "as_bool",
    "sha256_hex",
    "hmac_sha256_b64",
]
