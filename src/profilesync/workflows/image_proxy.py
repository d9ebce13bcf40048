"""Fetch-time half of image sanitation: dereference proxied references safely."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import quote

import aiohttp

from .image_utils import DEFAULT_SANITIZER, ImageSanitizer, parse_proxy_reference
from .sync_config import (
    CACHE_CONTROL_IMAGE,
    CACHE_CONTROL_NONE,
    CACHE_CONTROL_PLACEHOLDER,
    IMAGE_PROXY_USER_AGENT,
    IMAGE_RELAY_ENDPOINT,
    IMAGE_RELAY_PARAMS,
    SyncConfig,
)
from .sync_utils import session_scope

logger = logging.getLogger(__name__)


@dataclass
class ProxiedImage:
    """An image body plus the headers a route handler should serve it with."""

    status: int
    body: bytes
    content_type: str
    cache_control: str
    source: str

    @property
    def ok(self) -> bool:
        return self.status == 200 and bool(self.body)


class ImageProxy:
    """Fetch external profile images through a relay, falling back to placeholders."""

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        *,
        sanitizer: ImageSanitizer = DEFAULT_SANITIZER,
        relay_endpoint: str = IMAGE_RELAY_ENDPOINT,
    ) -> None:
        self.config = config or SyncConfig()
        self.sanitizer = sanitizer
        self.relay_endpoint = relay_endpoint

    def relay_url(self, url: str) -> str:
        return f"{self.relay_endpoint}?url={quote(url, safe='')}&{IMAGE_RELAY_PARAMS}"

    async def fetch_reference(
        self,
        reference: str,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> ProxiedImage:
        """Serve a reference previously produced by :meth:`ImageSanitizer.sanitize`.

        Site-local paths and ``data:`` URIs cannot go through the relay, so
        they get the generic placeholder without a relay round trip.
        """

        if self.sanitizer.is_proxied(reference):
            url, handle = parse_proxy_reference(reference)
        elif self.sanitizer.is_internal(reference) and not self.sanitizer.is_placeholder(reference):
            logger.debug("Reference %r is not proxyable; serving placeholder", reference[:80])
            async with session_scope(session) as active:
                return await self._serve_placeholder(active, "user")
        else:
            url, handle = reference, None
        return await self.fetch(url, handle, session=session)

    async def fetch(
        self,
        url: Optional[str],
        handle: Optional[str],
        session: Optional[aiohttp.ClientSession] = None,
    ) -> ProxiedImage:
        handle = (handle or "").strip() or "user"
        async with session_scope(session) as active:
            if not url or not url.strip():
                return await self._serve_placeholder(active, handle)
            if self.sanitizer.is_placeholder(url, handle):
                # Never substitute a placeholder for itself.
                return await self._serve_direct(active, url.strip(), handle)
            try:
                status, content_type, body = await self._get_image(active, self.relay_url(url.strip()))
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                logger.warning("Image relay failed for @%s: %s", handle, exc or type(exc).__name__)
                return await self._serve_placeholder(active, handle)
            if status == 200 and content_type.startswith("image/") and body:
                return ProxiedImage(200, body, content_type, CACHE_CONTROL_IMAGE, "relay")
            logger.warning(
                "Image relay returned unusable response for @%s (status=%s type=%s bytes=%d)",
                handle,
                status,
                content_type,
                len(body),
            )
            return await self._serve_placeholder(active, handle)

    async def _serve_placeholder(self, session: aiohttp.ClientSession, handle: str) -> ProxiedImage:
        return await self._serve_direct(session, self.sanitizer.placeholder(handle), handle)

    async def _serve_direct(self, session: aiohttp.ClientSession, url: str, handle: str) -> ProxiedImage:
        try:
            status, content_type, body = await self._get_image(session, url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("Placeholder fetch failed for @%s: %s", handle, exc or type(exc).__name__)
            return _unavailable()
        if status != 200 or not body:
            logger.warning("Placeholder fetch returned status %s for @%s", status, handle)
            return _unavailable()
        return ProxiedImage(200, body, content_type or "image/png", CACHE_CONTROL_PLACEHOLDER, "placeholder")

    async def _get_image(self, session: aiohttp.ClientSession, url: str) -> Tuple[int, str, bytes]:
        timeout = aiohttp.ClientTimeout(total=self.config.image_timeout)
        headers = {"User-Agent": IMAGE_PROXY_USER_AGENT}
        async with session.get(url, timeout=timeout, headers=headers) as resp:
            content_type = resp.headers.get("Content-Type", "").split(";")[0].strip().lower()
            body = await resp.read()
            return resp.status, content_type, body


def _unavailable() -> ProxiedImage:
    return ProxiedImage(502, b"", "text/plain", CACHE_CONTROL_NONE, "unavailable")


__all__ = ["ImageProxy", "ProxiedImage"]
