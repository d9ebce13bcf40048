"""Freshness-gated profile synchronization.

``ProfileSynchronizer`` is the only writer of profile records. A stored record
younger than the TTL is returned without touching the network; an older one is
re-resolved through the strategy runner and upserted as a unit. Resolution
failures never surface to the caller: they fall back to the stored record, or
to a transient placeholder when nothing is stored yet.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional, Tuple

import aiohttp

from .extractor import ProfileFields
from .image_utils import ImageSanitizer, placeholder_for
from .store import ProfileRecord, ProfileStore
from .strategies import ResolutionReport, StrategyRunner
from .sync_config import SyncConfig
from .sync_utils import normalize_handle, utcnow

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class ProfileSynchronizer:
    def __init__(
        self,
        store: ProfileStore,
        runner: Optional[StrategyRunner] = None,
        *,
        config: Optional[SyncConfig] = None,
        sanitizer: Optional[ImageSanitizer] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.config = config or (runner.config if runner is not None else SyncConfig())
        self.store = store
        self.runner = runner or StrategyRunner(self.config)
        self.sanitizer = sanitizer or ImageSanitizer(proxy_path=self.config.proxy_path, placeholder=placeholder_for)
        self.clock = clock

    # -- freshness -------------------------------------------------------

    def is_fresh(self, record: Optional[ProfileRecord], now: Optional[datetime] = None) -> bool:
        if record is None or record.last_synced_at is None:
            return False
        now = now or self.clock()
        return now - record.last_synced_at < self.config.ttl

    def needs_refresh(self, handle: str) -> bool:
        """True when ``handle`` has no record, was never synced, or its TTL has elapsed."""

        return not self.is_fresh(self.store.get(normalize_handle(handle)))

    def is_valid(self, record: ProfileRecord) -> bool:
        """A synced record is worth keeping if it has followers or a real image."""

        return record.follower_count > 0 or not self.sanitizer.is_placeholder(record.image_ref, record.handle)

    # -- building blocks shared with the scheduler ----------------------

    def placeholder_record(self, handle: str) -> ProfileRecord:
        handle = normalize_handle(handle)
        return ProfileRecord(
            handle=handle,
            display_name=handle,
            image_ref=self.sanitizer.sanitize(None, handle),
        )

    def to_record(self, fields: ProfileFields) -> ProfileRecord:
        handle = normalize_handle(fields.handle)
        return ProfileRecord(
            handle=handle,
            display_name=fields.display_name or handle,
            image_ref=self.sanitizer.sanitize(fields.image_url, handle),
            follower_count=max(0, fields.follower_count),
            following_count=max(0, fields.following_count),
            post_count=max(0, fields.post_count),
            biography=fields.biography or "",
            is_private=fields.is_private,
            is_verified=fields.is_verified,
        )

    async def resolve_record(
        self,
        handle: str,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> Tuple[Optional[ProfileRecord], ResolutionReport]:
        """Run the strategy chain and shape the winner into an uncommitted record."""

        report = await self.runner.resolve_with_report(handle, session=session)
        if report.fields is None:
            return None, report
        return self.to_record(report.fields), report

    def commit(self, record: ProfileRecord) -> ProfileRecord:
        return self.store.upsert(record.with_sync_time(self.clock()))

    def mark_attempted(self, handle: str) -> ProfileRecord:
        """Advance ``last_synced_at`` without touching stored fields (failure backoff)."""

        return self.store.touch(self.placeholder_record(handle), self.clock())

    # -- public operations -----------------------------------------------

    async def force_refresh(
        self,
        handle: str,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> Optional[ProfileRecord]:
        handle = normalize_handle(handle)
        record, report = await self.resolve_record(handle, session=session)
        if record is None:
            logger.warning("Refresh failed for @%s (%s)", handle, report.reasons)
            return None
        stored = self.commit(record)
        logger.info("Synced @%s via %s", handle, report.strategy)
        return stored

    async def get_or_refresh(
        self,
        handle: str,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> ProfileRecord:
        handle = normalize_handle(handle)
        stored = self.store.get(handle)
        if self.is_fresh(stored):
            logger.info("Cache hit for @%s", handle)
            return stored
        refreshed = await self.force_refresh(handle, session=session)
        if refreshed is not None:
            return refreshed
        if stored is not None:
            logger.warning("Serving stale record for @%s", handle)
            return stored
        logger.warning("No data for @%s; returning placeholder", handle)
        return self.placeholder_record(handle)


__all__ = ["ProfileSynchronizer"]
