"""Profilesync defaults (endpoints, headers, sentinels, windows, paths).

Centralizes static defaults so the engine modules carry no embedded magic
strings. ``SyncConfig`` is built from these values; callers can inject their
own instance (or use :meth:`SyncConfig.from_env`) to override any of them.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from datetime import timedelta
from pathlib import Path
from typing import Dict, Optional, Tuple

# Source endpoints
PROFILE_PAGE_URL = "https://www.instagram.com/{handle}/"
PROFILE_API_URL = "https://i.instagram.com/api/v1/users/web_profile_info/?username={handle}"
IG_APP_ID = "936619743392459"

# Client identities
UA_ANDROID_CHROME = (
    "Mozilla/5.0 (Linux; Android 10; K) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Mobile Safari/537.36"
)
UA_DESKTOP_CHROME = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
UA_MOBILE_APP = (
    "Instagram 309.0.0.40.113 Android (31/12; 420dpi; 1080x2263; "
    "Google/google; Pixel 6; oriole; oriole; en_US; 541635890)"
)

HDR_ACCEPT_HTML = "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8"
HDR_ACCEPT_LANGUAGE = "en-US,en;q=0.9"

STRATEGY_HEADERS: Dict[str, Dict[str, str]] = {
    "mobile_web": {
        "User-Agent": UA_ANDROID_CHROME,
        "Accept": HDR_ACCEPT_HTML,
        "Accept-Language": HDR_ACCEPT_LANGUAGE,
        "Referer": "https://www.google.com/",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "cross-site",
        "Upgrade-Insecure-Requests": "1",
        "Cache-Control": "no-cache",
    },
    "desktop_web": {
        "User-Agent": UA_DESKTOP_CHROME,
        "Accept": HDR_ACCEPT_HTML,
        "Accept-Language": HDR_ACCEPT_LANGUAGE,
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Cache-Control": "no-cache",
    },
    "app_api": {
        "User-Agent": UA_MOBILE_APP,
        "Accept": "application/json",
        "Accept-Language": HDR_ACCEPT_LANGUAGE,
        "X-IG-App-ID": IG_APP_ID,
    },
}

STRATEGY_URLS: Dict[str, str] = {
    "mobile_web": PROFILE_PAGE_URL,
    "desktop_web": PROFILE_PAGE_URL,
    "app_api": PROFILE_API_URL,
}

DEFAULT_STRATEGY_NAMES: Tuple[str, ...] = ("mobile_web", "desktop_web", "app_api")

# Image references
PROXY_PATH = "/api/image-proxy"
PLACEHOLDER_ENDPOINT = "https://ui-avatars.com/api/"
PLACEHOLDER_PARAMS = "size=200&background=00bfff&color=fff&bold=true"
IMAGE_RELAY_ENDPOINT = "https://wsrv.nl/"
IMAGE_RELAY_PARAMS = "output=jpg&q=80&w=400"
IMAGE_PROXY_USER_AGENT = "Mozilla/5.0 (compatible; ImageProxy/1.0)"
EMPTY_IMAGE_SENTINELS = frozenset({"", "null", "undefined", "none", "nan", "false"})
MIN_IMAGE_REF_CHARS = 5
CACHE_CONTROL_IMAGE = "public, max-age=31536000, immutable"
CACHE_CONTROL_PLACEHOLDER = "public, max-age=3600"
CACHE_CONTROL_NONE = "no-store"

# Extraction limits
MAX_SEARCH_DEPTH = 12
BIOGRAPHY_MAX_CHARS = 500
MIN_IMAGE_URL_CHARS = 10
MIN_DOCUMENT_CHARS = 500
LOGIN_WALL_MARKERS = ("login • instagram", "<title>login")
LOGIN_REDIRECT_MARKERS = ("/accounts/login", "/challenge/")

# Freshness / batch defaults
DEFAULT_TTL_HOURS = 24.0
DEFAULT_PROFILE_TIMEOUT = 8.0
DEFAULT_IMAGE_TIMEOUT = 8.0
DEFAULT_BATCH_SIZE = 2
DEFAULT_JITTER = (1.0, 3.0)
DEFAULT_STRATEGY_DELAY = (0.5, 1.5)

# Paths (working-directory relative)
DEFAULT_DB_PATH = Path("profilesync.db")


def _as_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if not normalized:
        return default
    return normalized not in {"0", "false", "off", "no"}


def _safe_int(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        cleaned = value.strip()
        if not cleaned:
            return default
        return int(cleaned)
    except ValueError:
        return default


def _safe_float(value: Optional[str], default: float) -> float:
    if value is None:
        return default
    try:
        cleaned = value.strip()
        if not cleaned:
            return default
        return float(cleaned)
    except ValueError:
        return default


def _split_names(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    seen = set()
    ordered = []
    for token in value.split(","):
        cleaned = token.strip().lower()
        if not cleaned or cleaned in seen:
            continue
        seen.add(cleaned)
        ordered.append(cleaned)
    return tuple(ordered)


@dataclass(frozen=True)
class SyncConfig:
    """Runtime knobs for the resolution and synchronization engine."""

    db_path: Path = DEFAULT_DB_PATH
    ttl_hours: float = DEFAULT_TTL_HOURS
    profile_timeout: float = DEFAULT_PROFILE_TIMEOUT
    image_timeout: float = DEFAULT_IMAGE_TIMEOUT
    batch_size: int = DEFAULT_BATCH_SIZE
    jitter: Tuple[float, float] = DEFAULT_JITTER
    strategy_delay: Tuple[float, float] = DEFAULT_STRATEGY_DELAY
    strategies: Tuple[str, ...] = DEFAULT_STRATEGY_NAMES
    proxy_path: str = PROXY_PATH
    min_document_chars: int = MIN_DOCUMENT_CHARS
    strategy_headers: Dict[str, Dict[str, str]] = field(default_factory=lambda: dict(STRATEGY_HEADERS))
    strategy_urls: Dict[str, str] = field(default_factory=lambda: dict(STRATEGY_URLS))

    @property
    def ttl(self) -> timedelta:
        return timedelta(hours=self.ttl_hours)

    def without_delays(self) -> "SyncConfig":
        return replace(self, jitter=(0.0, 0.0), strategy_delay=(0.0, 0.0))

    def validate(self) -> "SyncConfig":
        if self.ttl_hours <= 0:
            raise ValueError("ttl_hours must be positive")
        if self.profile_timeout <= 0 or self.image_timeout <= 0:
            raise ValueError("fetch timeouts must be positive")
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        for label, (low, high) in (("jitter", self.jitter), ("strategy_delay", self.strategy_delay)):
            if low < 0 or high < low:
                raise ValueError(f"{label} must be a non-negative (min, max) range")
        if not self.strategies:
            raise ValueError("at least one strategy is required")
        unknown = [name for name in self.strategies if name not in self.strategy_urls]
        if unknown:
            raise ValueError(f"Unknown strategy name(s): {', '.join(unknown)}")
        return self

    @classmethod
    def from_env(cls) -> "SyncConfig":
        """Build a config from ``PROFILESYNC_*`` variables, falling back to defaults."""

        base = cls()
        jitter = (
            _safe_float(os.getenv("PROFILESYNC_JITTER_MIN"), base.jitter[0]),
            _safe_float(os.getenv("PROFILESYNC_JITTER_MAX"), base.jitter[1]),
        )
        delay = (
            _safe_float(os.getenv("PROFILESYNC_STRATEGY_DELAY_MIN"), base.strategy_delay[0]),
            _safe_float(os.getenv("PROFILESYNC_STRATEGY_DELAY_MAX"), base.strategy_delay[1]),
        )
        db_raw = os.getenv("PROFILESYNC_DB_PATH", "").strip()
        config = replace(
            base,
            db_path=Path(db_raw) if db_raw else base.db_path,
            ttl_hours=_safe_float(os.getenv("PROFILESYNC_TTL_HOURS"), base.ttl_hours),
            profile_timeout=_safe_float(os.getenv("PROFILESYNC_PROFILE_TIMEOUT"), base.profile_timeout),
            image_timeout=_safe_float(os.getenv("PROFILESYNC_IMAGE_TIMEOUT"), base.image_timeout),
            batch_size=_safe_int(os.getenv("PROFILESYNC_BATCH_SIZE"), base.batch_size),
            jitter=jitter,
            strategy_delay=delay,
            strategies=_split_names(os.getenv("PROFILESYNC_STRATEGIES")) or base.strategies,
            proxy_path=os.getenv("PROFILESYNC_PROXY_PATH", "").strip() or base.proxy_path,
        )
        if _as_bool(os.getenv("PROFILESYNC_DISABLE_DELAYS"), False):
            config = config.without_delays()
        return config.validate()


__all__ = [
    "SyncConfig",
    "DEFAULT_STRATEGY_NAMES",
    "STRATEGY_HEADERS",
    "STRATEGY_URLS",
    "PROXY_PATH",
    "PLACEHOLDER_ENDPOINT",
    "IMAGE_RELAY_ENDPOINT",
    "EMPTY_IMAGE_SENTINELS",
    "CACHE_CONTROL_IMAGE",
    "CACHE_CONTROL_PLACEHOLDER",
    "CACHE_CONTROL_NONE",
    "MAX_SEARCH_DEPTH",
    "BIOGRAPHY_MAX_CHARS",
]
