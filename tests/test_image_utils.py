from urllib.parse import quote

import aiohttp
import pytest

from profilesync.workflows.image_utils import (
    ImageSanitizer,
    parse_proxy_reference,
    placeholder_for,
    sanitize,
)

RAW_REFS = [
    None,
    "",
    "null",
    "undefined",
    "abc",
    "https://scontent.cdninstagram.com/v/t51/a.jpg?x=1&amp;y=2",
    "https:\\/\\/cdn.example.com\\/b.jpg?x=1\\u0026y=2",
    "//cdn.example.com/c.jpg",
    "/static/local.png",
    "data:image/png;base64,AAAA",
    "javascript:alert(1)",
    "ftp://files.example.com/a.png",
    12345,
]


def test_placeholder_is_deterministic():
    assert sanitize("", "bob") == sanitize("", "bob")
    assert placeholder_for("Bob") == placeholder_for("bob")
    assert placeholder_for("bob") != placeholder_for("carol")


def test_missing_image_yields_handle_placeholder_without_network(monkeypatch):
    def _no_sessions(*args, **kwargs):
        raise AssertionError("sanitize must not open HTTP sessions")

    monkeypatch.setattr(aiohttp, "ClientSession", _no_sessions)

    ref = sanitize(None, "bob")

    assert ref
    assert "bob" in ref.lower()
    assert ref == placeholder_for("bob")


@pytest.mark.parametrize("raw", ["null", "undefined", "None", "abc", "    ", "false"])
def test_sentinels_become_placeholder(raw):
    assert sanitize(raw, "bob") == placeholder_for("bob")


@pytest.mark.parametrize("raw", RAW_REFS)
def test_sanitize_is_idempotent(raw):
    once = sanitize(raw, "alice")
    assert once
    assert sanitize(once, "alice") == once


def test_external_url_is_wrapped_and_unescaped():
    ref = sanitize("https://scontent.cdninstagram.com/v/t51/a.jpg?x=1&amp;y=2", "alice")
    original = "https://scontent.cdninstagram.com/v/t51/a.jpg?x=1&y=2"

    assert ref == f"/api/image-proxy?url={quote(original, safe='')}&username=alice"
    assert parse_proxy_reference(ref) == (original, "alice")


def test_json_escaped_and_protocol_relative_urls():
    url, _ = parse_proxy_reference(sanitize("https:\\/\\/cdn.example.com\\/b.jpg?x=1\\u0026y=2", "alice"))
    assert url == "https://cdn.example.com/b.jpg?x=1&y=2"

    url, _ = parse_proxy_reference(sanitize("//cdn.example.com/c.jpg", "alice"))
    assert url == "https://cdn.example.com/c.jpg"


def test_internal_references_pass_through():
    for ref in ("/static/local.png", "data:image/png;base64,AAAA", placeholder_for("carol")):
        assert sanitize(ref, "alice") == ref


@pytest.mark.parametrize("raw", ["javascript:alert(1)", "ftp://files.example.com/a.png", "not a url at all"])
def test_unusable_schemes_become_placeholder(raw):
    assert sanitize(raw, "alice") == placeholder_for("alice")


def test_custom_proxy_path_and_placeholder():
    sanitizer = ImageSanitizer(
        proxy_path="/img",
        placeholder=lambda handle: f"/avatars/{handle}.svg",
        placeholder_prefix="/avatars/",
    )

    assert sanitizer.sanitize("", "dora") == "/avatars/dora.svg"
    assert sanitizer.sanitize("https://cdn.example.com/d.jpg", "dora").startswith("/img?url=")
    assert sanitizer.is_placeholder("/avatars/dora.svg", "dora")


def test_sanitize_degrades_to_placeholder_on_internal_error():
    class Exploding(ImageSanitizer):
        def wrap(self, url, handle):
            raise RuntimeError("boom")

    assert Exploding().sanitize("https://cdn.example.com/e.jpg", "erin") == placeholder_for("erin")
