"""Unattended batch refresh of the least recently synced profiles."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import aiohttp

from ..core.keys import K_DETAILS, K_ERROR, K_HANDLE, K_REASON, K_SKIPPED, K_STATUS, K_UPDATED
from .strategies import SleepFunc
from .sync_utils import session_scope
from .synchronizer import ProfileSynchronizer

logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_SKIPPED_INVALID = "skipped_invalid"
STATUS_SKIPPED_ERROR = "skipped_error"


@dataclass
class CycleReport:
    """Per-cycle tally; every detail entry carries ``handle`` and ``status``.

    A failed candidate selection is recorded with ``handle=None`` and counts
    as skipped.
    """

    updated: int = 0
    skipped: int = 0
    details: List[Dict[str, Any]] = field(default_factory=list)

    def add(
        self,
        handle: Optional[str],
        status: str,
        *,
        reason: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        entry: Dict[str, Any] = {K_HANDLE: handle, K_STATUS: status}
        if reason is not None:
            entry[K_REASON] = reason
        if error is not None:
            entry[K_ERROR] = error
        self.details.append(entry)
        if status == STATUS_OK:
            self.updated += 1
        else:
            self.skipped += 1

    def to_dict(self) -> Dict[str, Any]:
        return {K_UPDATED: self.updated, K_SKIPPED: self.skipped, K_DETAILS: list(self.details)}


class BatchRefreshScheduler:
    """Refresh up to ``batch_size`` due profiles per cycle, one at a time.

    Failed candidates still get their ``last_synced_at`` advanced so they move
    to the back of the queue instead of being retried on the next cycle.
    """

    def __init__(
        self,
        synchronizer: ProfileSynchronizer,
        *,
        batch_size: Optional[int] = None,
        sleep: SleepFunc = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.synchronizer = synchronizer
        self.config = synchronizer.config
        self.batch_size = batch_size if batch_size is not None else self.config.batch_size
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def run_cycle(self, session: Optional[aiohttp.ClientSession] = None) -> CycleReport:
        report = CycleReport()
        try:
            candidates = self.synchronizer.store.select_due(
                self.synchronizer.clock(), self.config.ttl, self.batch_size
            )
        except Exception as exc:
            logger.exception("Could not select refresh candidates")
            report.add(None, STATUS_SKIPPED_ERROR, error=str(exc) or type(exc).__name__)
            return report

        logger.info("Refresh cycle: %d candidate(s)", len(candidates))
        async with session_scope(session) as active:
            for record in candidates:
                await self._jitter()
                await self._refresh_one(record.handle, active, report)
        logger.info("Refresh cycle done: %d updated, %d skipped", report.updated, report.skipped)
        return report

    async def _refresh_one(self, handle: str, session: aiohttp.ClientSession, report: CycleReport) -> None:
        sync = self.synchronizer
        try:
            record, resolution = await sync.resolve_record(handle, session=session)
            if record is not None and sync.is_valid(record):
                sync.commit(record)
                report.add(handle, STATUS_OK)
                return
            sync.mark_attempted(handle)
            if record is None:
                report.add(handle, STATUS_SKIPPED_ERROR, reason=resolution.reasons)
            else:
                report.add(handle, STATUS_SKIPPED_INVALID, reason="placeholder_only")
        except Exception as exc:
            logger.exception("Refresh of @%s failed", handle)
            try:
                sync.mark_attempted(handle)
            except Exception:
                logger.exception("Could not mark @%s as attempted", handle)
            report.add(handle, STATUS_SKIPPED_ERROR, error=str(exc) or type(exc).__name__)

    async def _jitter(self) -> None:
        low, high = self.config.jitter
        if high <= 0:
            return
        await self._sleep(self._rng.uniform(low, high))


__all__ = [
    "BatchRefreshScheduler",
    "CycleReport",
    "STATUS_OK",
    "STATUS_SKIPPED_INVALID",
    "STATUS_SKIPPED_ERROR",
]
