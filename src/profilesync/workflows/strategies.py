"""Ordered retrieval strategies against the profile source.

Each strategy is one request shape (endpoint + client identity). The runner
tries them strictly in order, one bounded fetch each, and stops at the first
document the extractor accepts. Failures never raise: they are recorded as
``StrategyAttempt`` reasons and the next strategy runs.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import quote

import aiohttp

from .extractor import DEFAULT_RULES, ExtractionRules, ProfileFields, extract, looks_like_login_wall
from .sync_config import SyncConfig
from .sync_utils import normalize_handle, session_scope
from .text_normalize import decode_bytes_auto

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class Strategy:
    """One request recipe: a URL template keyed by ``{handle}`` plus headers."""

    name: str
    url_template: str
    headers: Dict[str, str] = field(default_factory=dict)

    def url_for(self, handle: str) -> str:
        return self.url_template.format(handle=quote(handle, safe="._"))


@dataclass
class FetchedDocument:
    status: int
    text: str
    content_type: str
    final_url: str

    @property
    def is_json(self) -> bool:
        if "json" in (self.content_type or "").lower():
            return True
        return self.text.lstrip()[:1] in {"{", "["}


@dataclass
class StrategyAttempt:
    strategy: str
    status: Optional[int]
    reason: str
    elapsed_ms: int

    @property
    def ok(self) -> bool:
        return self.reason == "ok"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "status": self.status,
            "reason": self.reason,
            "elapsed_ms": self.elapsed_ms,
        }


@dataclass
class ResolutionReport:
    """Outcome of one resolution: the winning fields (if any) and every attempt made."""

    handle: str
    fields: Optional[ProfileFields]
    attempts: List[StrategyAttempt] = field(default_factory=list)

    @property
    def strategy(self) -> Optional[str]:
        for attempt in self.attempts:
            if attempt.ok:
                return attempt.strategy
        return None

    @property
    def reasons(self) -> str:
        return ",".join(f"{a.strategy}:{a.reason}" for a in self.attempts)


def build_strategies(config: SyncConfig) -> List[Strategy]:
    """Materialize the configured strategy names into ``Strategy`` objects, in order."""

    strategies: List[Strategy] = []
    for name in config.strategies:
        template = config.strategy_urls.get(name)
        if not template:
            raise ValueError(f"Unknown strategy: {name}")
        strategies.append(Strategy(name, template, dict(config.strategy_headers.get(name, {}))))
    return strategies


class StrategyRunner:
    """Sequential "first success wins" resolver over an ordered strategy list."""

    def __init__(
        self,
        config: Optional[SyncConfig] = None,
        strategies: Optional[Sequence[Strategy]] = None,
        *,
        rules: ExtractionRules = DEFAULT_RULES,
        sleep: SleepFunc = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config or SyncConfig()
        self.strategies: Tuple[Strategy, ...] = tuple(strategies if strategies is not None else build_strategies(self.config))
        if not self.strategies:
            raise ValueError("StrategyRunner needs at least one strategy")
        self.rules = rules
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def resolve(
        self,
        handle: str,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> Optional[ProfileFields]:
        report = await self.resolve_with_report(handle, session=session)
        return report.fields

    async def resolve_with_report(
        self,
        handle: str,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> ResolutionReport:
        handle = normalize_handle(handle)
        report = ResolutionReport(handle=handle, fields=None)
        async with session_scope(session) as active:
            for index, strategy in enumerate(self.strategies):
                if index:
                    await self._pause()
                attempt, fields = await self._attempt(active, strategy, handle)
                report.attempts.append(attempt)
                if fields is not None:
                    report.fields = fields
                    logger.info(
                        "Resolved @%s via %s (%d followers)",
                        handle,
                        strategy.name,
                        fields.follower_count,
                    )
                    return report
                logger.warning(
                    "Strategy %s failed for @%s: %s (status=%s)",
                    strategy.name,
                    handle,
                    attempt.reason,
                    attempt.status,
                )
        logger.warning("All %d strategies exhausted for @%s", len(self.strategies), handle)
        return report

    async def _pause(self) -> None:
        low, high = self.config.strategy_delay
        if high <= 0:
            return
        await self._sleep(self._rng.uniform(low, high))

    async def _attempt(
        self,
        session: aiohttp.ClientSession,
        strategy: Strategy,
        handle: str,
    ) -> Tuple[StrategyAttempt, Optional[ProfileFields]]:
        start = time.perf_counter()

        def _done(status: Optional[int], reason: str) -> StrategyAttempt:
            return StrategyAttempt(strategy.name, status, reason, int((time.perf_counter() - start) * 1000))

        try:
            doc = await self._fetch_once(session, strategy, handle)
        except asyncio.TimeoutError:
            return _done(None, "timeout"), None
        except aiohttp.ClientError as exc:
            logger.debug("Network error for %s @%s: %s", strategy.name, handle, exc)
            return _done(None, "network_error"), None

        if doc.status != 200:
            return _done(doc.status, f"status_{doc.status}"), None
        if looks_like_login_wall(doc.text, doc.final_url, handle):
            return _done(doc.status, "login_wall"), None
        if not doc.is_json and len(doc.text) < self.config.min_document_chars:
            return _done(doc.status, "thin_body"), None
        try:
            fields = extract(doc.text, handle, self.rules)
        except Exception:
            logger.warning("Extractor crashed on %s response for @%s", strategy.name, handle, exc_info=True)
            return _done(doc.status, "extraction_error"), None
        if fields is None:
            return _done(doc.status, "extraction_empty"), None
        fields.sources = {**fields.sources, "strategy": strategy.name}
        return _done(doc.status, "ok"), fields

    async def _fetch_once(
        self,
        session: aiohttp.ClientSession,
        strategy: Strategy,
        handle: str,
    ) -> FetchedDocument:
        timeout = aiohttp.ClientTimeout(total=self.config.profile_timeout)
        async with session.get(
            strategy.url_for(handle),
            headers=strategy.headers or None,
            timeout=timeout,
            allow_redirects=True,
        ) as resp:
            raw = await resp.read()
            content_type = resp.headers.get("Content-Type", "text/html").split(";")[0].strip()
            text = decode_bytes_auto(raw, resp.headers)
            return FetchedDocument(resp.status, text, content_type, str(resp.url))


def strategy_names(strategies: Iterable[Strategy]) -> List[str]:
    return [strategy.name for strategy in strategies]


__all__ = [
    "Strategy",
    "StrategyAttempt",
    "ResolutionReport",
    "FetchedDocument",
    "StrategyRunner",
    "build_strategies",
    "strategy_names",
]
