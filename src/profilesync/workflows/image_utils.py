"""Image reference sanitation: proxy wrapping and deterministic placeholders."""

from __future__ import annotations

import html
import logging
from typing import Callable, Optional, Tuple
from urllib.parse import parse_qs, quote, urlparse

from .sync_config import (
    EMPTY_IMAGE_SENTINELS,
    MIN_IMAGE_REF_CHARS,
    PLACEHOLDER_ENDPOINT,
    PLACEHOLDER_PARAMS,
    PROXY_PATH,
)

logger = logging.getLogger(__name__)

PlaceholderFunc = Callable[[str], str]


def placeholder_for(handle: str) -> str:
    """Generated-avatar URL for ``handle``; the same handle always yields the same URL."""

    name = (handle or "").strip().lstrip("@").lower() or "user"
    return f"{PLACEHOLDER_ENDPOINT}?name={quote(name, safe='')}&{PLACEHOLDER_PARAMS}"


class ImageSanitizer:
    """Rewrite raw image references into proxied or placeholder references.

    ``sanitize`` is total: every input, including garbage, yields a usable
    reference. Internal references pass through unchanged, so sanitizing twice
    is a no-op.
    """

    def __init__(
        self,
        *,
        proxy_path: str = PROXY_PATH,
        placeholder: PlaceholderFunc = placeholder_for,
        placeholder_prefix: Optional[str] = PLACEHOLDER_ENDPOINT,
    ) -> None:
        self.proxy_path = proxy_path
        self.placeholder = placeholder
        self.placeholder_prefix = placeholder_prefix

    def is_placeholder(self, reference: Optional[str], handle: Optional[str] = None) -> bool:
        ref = (reference or "").strip()
        if not ref:
            return False
        if handle is not None and ref == self.placeholder(handle):
            return True
        return bool(self.placeholder_prefix) and ref.startswith(self.placeholder_prefix)

    def is_proxied(self, reference: Optional[str]) -> bool:
        return (reference or "").strip().startswith(self.proxy_path)

    def is_internal(self, reference: Optional[str]) -> bool:
        ref = (reference or "").strip()
        if not ref:
            return False
        if self.is_proxied(ref) or self.is_placeholder(ref):
            return True
        if ref.startswith("data:image/"):
            return True
        return ref.startswith("/") and not ref.startswith("//")

    def wrap(self, url: str, handle: str) -> str:
        return f"{self.proxy_path}?url={quote(url, safe='')}&username={quote(handle, safe='')}"

    def sanitize(self, raw: Optional[str], handle: str) -> str:
        try:
            return self._sanitize(raw, handle)
        except Exception as exc:
            logger.warning("Image sanitation failed for @%s: %s", handle, exc)
            return self.placeholder(handle)

    def _sanitize(self, raw: Optional[str], handle: str) -> str:
        ref = raw.strip() if isinstance(raw, str) else ""
        if len(ref) < MIN_IMAGE_REF_CHARS or ref.lower() in EMPTY_IMAGE_SENTINELS:
            return self.placeholder(handle)
        if self.is_internal(ref) or (handle and ref == self.placeholder(handle)):
            return ref
        cleaned = html.unescape(ref).replace("\\u0026", "&").replace("\\/", "/")
        if cleaned.startswith("//"):
            cleaned = f"https:{cleaned}"
        parsed = urlparse(cleaned)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            logger.debug("Unusable image reference for @%s: %r", handle, ref[:80])
            return self.placeholder(handle)
        return self.wrap(cleaned, handle)


def parse_proxy_reference(reference: str) -> Tuple[Optional[str], Optional[str]]:
    """Split a proxied reference back into ``(original_url, handle)``."""

    query = urlparse(reference or "").query
    params = parse_qs(query)
    url = (params.get("url") or [None])[0]
    handle = (params.get("username") or [None])[0]
    return url, handle


DEFAULT_SANITIZER = ImageSanitizer()


def sanitize(raw: Optional[str], handle: str) -> str:
    """Sanitize ``raw`` with the default sanitizer (see :class:`ImageSanitizer`)."""

    return DEFAULT_SANITIZER.sanitize(raw, handle)


__all__ = [
    "ImageSanitizer",
    "DEFAULT_SANITIZER",
    "placeholder_for",
    "sanitize",
    "parse_proxy_reference",
]
