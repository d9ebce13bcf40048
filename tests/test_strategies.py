import asyncio
import json
import random

import aiohttp
import pytest

from profilesync.workflows.strategies import (
    FetchedDocument,
    Strategy,
    StrategyRunner,
    build_strategies,
    strategy_names,
)
from profilesync.workflows.sync_config import SyncConfig
from profilesync.workflows.sync_utils import InvalidHandleError

PADDING = "<p>" + "lorem ipsum " * 60 + "</p>"
STRATEGIES = [
    Strategy("a", "https://a.example/{handle}/"),
    Strategy("b", "https://b.example/{handle}/"),
    Strategy("c", "https://c.example/api?u={handle}"),
]


def _json_doc(handle, followers, url="https://a.example/"):
    payload = {"user": {"username": handle, "follower_count": followers, "full_name": f"{handle} {followers}"}}
    return FetchedDocument(200, json.dumps(payload), "application/json", url)


def _install(monkeypatch, outcomes):
    calls = []

    async def fake_fetch_once(self, session, strategy, handle):
        calls.append(strategy.name)
        outcome = outcomes[strategy.name]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    monkeypatch.setattr(StrategyRunner, "_fetch_once", fake_fetch_once, raising=False)
    return calls


def _runner(**kwargs):
    return StrategyRunner(SyncConfig().without_delays(), STRATEGIES, **kwargs)


def test_first_success_short_circuits(monkeypatch):
    calls = _install(monkeypatch, {"a": _json_doc("alice", 100), "b": _json_doc("alice", 999), "c": _json_doc("alice", 5)})

    report = asyncio.run(_runner().resolve_with_report("alice", session=object()))

    assert calls == ["a"]
    assert report.fields.follower_count == 100
    assert report.strategy == "a"
    assert report.fields.sources["strategy"] == "a"


def test_falls_through_failures_in_order(monkeypatch):
    calls = _install(
        monkeypatch,
        {
            "a": FetchedDocument(429, "rate limited", "text/plain", "https://a.example/alice/"),
            "b": asyncio.TimeoutError(),
            "c": _json_doc("alice", 7),
        },
    )

    report = asyncio.run(_runner().resolve_with_report("@Alice", session=object()))

    assert calls == ["a", "b", "c"]
    assert [a.reason for a in report.attempts] == ["status_429", "timeout", "ok"]
    assert report.attempts[0].status == 429
    assert report.fields.handle == "alice"
    assert report.strategy == "c"


def test_all_failures_return_none(monkeypatch):
    login = FetchedDocument(
        200,
        "<html><head><title>Login • Instagram</title></head><body>" + PADDING + "</body></html>",
        "text/html",
        "https://b.example/alice/",
    )
    _install(
        monkeypatch,
        {
            "a": aiohttp.ClientConnectionError("refused"),
            "b": login,
            "c": FetchedDocument(200, "<html><body>" + PADDING + "</body></html>", "text/html", "https://c.example/"),
        },
    )
    runner = _runner()

    report = asyncio.run(runner.resolve_with_report("alice", session=object()))

    assert report.fields is None
    assert report.strategy is None
    assert [a.reason for a in report.attempts] == ["network_error", "login_wall", "extraction_empty"]
    assert report.reasons == "a:network_error,b:login_wall,c:extraction_empty"
    assert asyncio.run(runner.resolve("alice", session=object())) is None


def test_thin_html_body_is_rejected(monkeypatch):
    _install(
        monkeypatch,
        {
            "a": FetchedDocument(200, "<html>1,000 Followers</html>", "text/html", "https://a.example/"),
            "b": _json_doc("alice", 3),
            "c": _json_doc("alice", 4),
        },
    )

    report = asyncio.run(_runner().resolve_with_report("alice", session=object()))

    assert report.attempts[0].reason == "thin_body"
    assert report.fields.follower_count == 3


def test_login_redirect_with_identity_markers_is_accepted(monkeypatch):
    html = (
        "<html><head><title>Login • Instagram</title>"
        '<script type="application/json">{"user":{"username":"alice","follower_count":12}}</script>'
        "</head><body>" + PADDING + "</body></html>"
    )
    _install(monkeypatch, {"a": FetchedDocument(200, html, "text/html", "https://a.example/"), "b": None, "c": None})

    fields = asyncio.run(_runner().resolve("alice", session=object()))

    assert fields is not None
    assert fields.follower_count == 12


def test_extractor_crash_is_recorded(monkeypatch):
    import profilesync.workflows.strategies as strategies_mod

    def boom(document, handle, rules):
        raise RuntimeError("parser exploded")

    monkeypatch.setattr(strategies_mod, "extract", boom)
    _install(monkeypatch, {"a": _json_doc("alice", 1), "b": _json_doc("alice", 2), "c": _json_doc("alice", 3)})

    report = asyncio.run(_runner().resolve_with_report("alice", session=object()))

    assert [a.reason for a in report.attempts] == ["extraction_error"] * 3
    assert report.fields is None


def test_delay_only_between_strategies(monkeypatch):
    _install(
        monkeypatch,
        {name: FetchedDocument(503, "", "text/plain", "https://x.example/") for name in ("a", "b", "c")},
    )
    slept = []

    async def fake_sleep(seconds):
        slept.append(seconds)

    config = SyncConfig(strategy_delay=(0.5, 1.5))
    runner = StrategyRunner(config, STRATEGIES, sleep=fake_sleep, rng=random.Random(7))

    asyncio.run(runner.resolve("alice", session=object()))

    assert len(slept) == 2
    assert all(0.5 <= s <= 1.5 for s in slept)


def test_invalid_handle_raises_before_fetching(monkeypatch):
    calls = _install(monkeypatch, {})
    with pytest.raises(InvalidHandleError):
        asyncio.run(_runner().resolve("not a handle", session=object()))
    assert calls == []


def test_build_strategies_from_config():
    strategies = build_strategies(SyncConfig())
    assert strategy_names(strategies) == ["mobile_web", "desktop_web", "app_api"]
    assert strategies[0].url_for("alice") == "https://www.instagram.com/alice/"
    assert "X-IG-App-ID" in strategies[2].headers
    assert strategies[2].url_for("a.b_c").endswith("username=a.b_c")

    with pytest.raises(ValueError):
        build_strategies(SyncConfig(strategies=("mobile_web", "carrier_pigeon")))


def test_fetched_document_json_detection():
    assert FetchedDocument(200, "{}", "application/json", "").is_json
    assert FetchedDocument(200, '  {"a": 1}', "text/plain", "").is_json
    assert not FetchedDocument(200, "<html></html>", "text/html", "").is_json
