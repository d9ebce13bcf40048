"""Shared helper functions used by the synchronization workflow."""

from __future__ import annotations

import json
import math
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, AsyncIterator, Optional
from urllib.parse import urlparse

import aiohttp

_HANDLE_RE = re.compile(r"^[a-z0-9._]{1,30}$")
_COUNT_RE = re.compile(r"^\s*([0-9][0-9.,]*)\s*([kKmM])?\s*$")
_MULTIPLIERS = {"k": 1_000, "m": 1_000_000}
_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
_PROFILE_HOSTS = {"instagram.com", "www.instagram.com", "m.instagram.com"}


class InvalidHandleError(ValueError):
    """Raised when a handle cannot be normalized into a valid identifier."""


def normalize_handle(raw: Optional[str]) -> str:
    """Return the lowercase identity form of a handle.

    Accepts ``@name``, ``name`` and profile URLs such as
    ``https://www.instagram.com/name/``.
    """

    value = (raw or "").strip()
    if "/" in value:
        parsed = urlparse(value if "://" in value else f"https://{value}")
        host = (parsed.hostname or "").lower()
        segments = [seg for seg in (parsed.path or "").split("/") if seg]
        if host in _PROFILE_HOSTS and segments:
            value = segments[0]
    value = value.lstrip("@").strip().lower()
    if not _HANDLE_RE.match(value):
        raise InvalidHandleError(f"Invalid handle: {raw!r}")
    return value


def parse_count(token: Optional[str]) -> Optional[int]:
    """Parse ``"1.2K"``, ``"10,500"`` or ``"2M"`` into a floored integer.

    Returns ``None`` when the token is not a count.
    """

    if token is None:
        return None
    match = _COUNT_RE.match(str(token))
    if not match:
        return None
    number, suffix = match.group(1).replace(",", ""), match.group(2)
    try:
        value = Decimal(number)
    except InvalidOperation:
        return None
    if suffix:
        value *= _MULTIPLIERS[suffix.lower()]
    return max(0, int(math.floor(value)))


def coerce_count(value: Any) -> Optional[int]:
    """Coerce an int, float, numeric string or ``{"count": n}`` node to a count."""

    if isinstance(value, dict):
        value = value.get("count")
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return max(0, value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return None
        return max(0, int(math.floor(value)))
    if isinstance(value, str):
        return parse_count(value)
    return None


def unescape_json_text(raw: Optional[str]) -> str:
    """Decode a JSON-escaped string body (``\\n``, ``\\"``, ``\\u0026``)."""

    if not raw:
        return ""
    try:
        return json.loads(f'"{raw}"')
    except ValueError:
        return (
            raw.replace("\\u0026", "&")
            .replace("\\n", "\n")
            .replace('\\"', '"')
            .replace("\\/", "/")
            .replace("\\\\", "\\")
        )


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Render a timestamp in a fixed-width UTC form whose lexical order is chronological."""

    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(value, _TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        parsed = datetime.fromisoformat(value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed


@asynccontextmanager
async def session_scope(session: Optional[aiohttp.ClientSession] = None) -> AsyncIterator[aiohttp.ClientSession]:
    """Yield ``session`` when supplied, otherwise a short-lived session closed on exit."""

    if session is not None:
        yield session
        return
    async with aiohttp.ClientSession() as owned:
        yield owned


def sanity_check() -> None:
    assert normalize_handle("@Alice") == "alice"
    assert normalize_handle("https://www.instagram.com/Bob.B/") == "bob.b"
    assert parse_count("1.2K") == 1200
    assert parse_count("10,500") == 10500
    assert coerce_count({"count": 7}) == 7
    assert unescape_json_text("a\\nb") == "a\nb"


sanity_check()

__all__ = [
    "InvalidHandleError",
    "normalize_handle",
    "parse_count",
    "coerce_count",
    "unescape_json_text",
    "utcnow",
    "format_timestamp",
    "parse_timestamp",
    "session_scope",
    "sanity_check",
]
