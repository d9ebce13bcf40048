import json

import pytest

from profilesync.workflows.extractor import (
    ExtractionRules,
    extract,
    find_profile_node,
    looks_like_login_wall,
    parse_summary_counts,
)

PADDING = "<p>" + "lorem ipsum " * 60 + "</p>"


def _api_payload(handle="alice", followers=1500, bio="hello there"):
    return {
        "data": {
            "user": {
                "username": handle,
                "full_name": "Alice Example",
                "biography": bio,
                "edge_followed_by": {"count": followers},
                "edge_follow": {"count": 20},
                "edge_owner_to_timeline_media": {"count": 33},
                "profile_pic_url_hd": "https://cdn.example.com/alice_hd.jpg",
                "profile_pic_url": "https://cdn.example.com/alice.jpg",
                "is_verified": True,
                "is_private": False,
            }
        },
        "status": "ok",
    }


@pytest.mark.parametrize(
    "text,field,expected",
    [
        ("1.2K Followers", "follower_count", 1200),
        ("2M Following", "following_count", 2_000_000),
        ("950 Posts", "post_count", 950),
        ("10,500 Followers", "follower_count", 10500),
    ],
)
def test_parse_summary_counts_suffixes(text, field, expected):
    assert parse_summary_counts(text)[field] == expected


def test_summary_string_extraction():
    fields = extract("1,234 Followers, 56 Following, 7 Posts", "alice")

    assert fields is not None
    assert (fields.follower_count, fields.following_count, fields.post_count) == (1234, 56, 7)
    assert fields.display_name == "alice"


def test_summary_followers_label_does_not_match_following():
    counts = parse_summary_counts("300 Following")
    assert counts["follower_count"] is None
    assert counts["following_count"] == 300


def test_json_payload_extraction():
    fields = extract(json.dumps(_api_payload()), "alice")

    assert fields is not None
    assert fields.follower_count == 1500
    assert fields.following_count == 20
    assert fields.post_count == 33
    assert fields.display_name == "Alice Example"
    assert fields.image_url == "https://cdn.example.com/alice_hd.jpg"
    assert fields.biography == "hello there"
    assert fields.is_verified is True
    assert fields.is_private is False
    assert fields.sources["follower_count"] == "json"


def test_find_profile_node_prefers_matching_identity():
    payload = {
        "suggested": {"username": "bob", "follower_count": 5},
        "data": {"user": {"username": "Alice", "follower_count": 9}},
    }

    assert find_profile_node(payload, "alice")["username"] == "Alice"
    assert find_profile_node(payload, "zed")["username"] == "bob"
    assert find_profile_node({"a": [1, 2, {"b": "c"}]}, "alice") is None


def test_find_profile_node_respects_depth_limit():
    node = {"username": "deep", "follower_count": 1}
    for _ in range(5):
        node = {"wrap": node}

    assert find_profile_node(node, rules=ExtractionRules(max_depth=3)) is None
    assert find_profile_node(node, rules=ExtractionRules(max_depth=5))["username"] == "deep"


def test_html_meta_summary_and_og_image():
    html = (
        "<html><head>"
        "<title>Alice Doe (@alice) • Instagram photos and videos</title>"
        '<meta name="description" content="1.2K Followers, 300 Following, 40 Posts - '
        'See Instagram photos and videos from Alice Doe (@alice)">'
        '<meta property="og:image" content="https://scontent.cdninstagram.com/v/alice.jpg?a=1&amp;b=2">'
        "</head><body>" + PADDING + "</body></html>"
    )

    fields = extract(html, "alice")

    assert fields is not None
    assert fields.follower_count == 1200
    assert fields.following_count == 300
    assert fields.post_count == 40
    assert fields.display_name == "Alice Doe"
    assert fields.image_url == "https://scontent.cdninstagram.com/v/alice.jpg?a=1&b=2"
    assert fields.sources["image_url"] == "meta_image"


def test_script_embedded_json():
    blob = json.dumps({"require": [{"user": {"username": "alice", "edge_followed_by": {"count": 77},
                                             "profile_pic_url": "https://cdn.example.com/p.jpg"}}]})
    html = f'<html><head><script type="application/json">{blob}</script></head><body>{PADDING}</body></html>'

    fields = extract(html, "alice")

    assert fields is not None
    assert fields.follower_count == 77
    assert fields.image_url == "https://cdn.example.com/p.jpg"
    assert fields.sources["follower_count"] == "script_json"


def test_script_assignment_is_parsed():
    blob = json.dumps({"user": {"username": "alice", "follower_count": 64}})
    html = f"<html><head><script>window._sharedData = {blob};</script></head><body>{PADDING}</body></html>"

    fields = extract(html, "alice")

    assert fields is not None
    assert fields.follower_count == 64


def test_zero_count_script_block_leaves_counts_to_summary():
    blob = json.dumps({"user": {"username": "alice", "edge_followed_by": {"count": 0}}})
    html = (
        "<html><head>"
        '<meta name="description" content="1.2K Followers, 300 Following, 40 Posts">'
        f'<script type="application/json">{blob}</script>'
        "</head><body>" + PADDING + "</body></html>"
    )

    fields = extract(html, "alice")

    assert fields is not None
    assert fields.follower_count == 1200
    assert fields.following_count == 300
    assert fields.post_count == 40
    assert fields.sources["follower_count"] == "summary"


def test_script_block_for_requested_handle_beats_other_profiles():
    suggested = json.dumps({"suggested": [{"username": "bob", "follower_count": 500, "full_name": "Bob"}]})
    own = json.dumps({"user": {"username": "alice", "follower_count": 1000, "full_name": "Alice Doe"}})
    html = (
        "<html><head>"
        f'<script type="application/json">{suggested}</script>'
        f'<script type="application/json">{own}</script>'
        "</head><body>" + PADDING + "</body></html>"
    )

    fields = extract(html, "alice")

    assert fields is not None
    assert fields.follower_count == 1000
    assert fields.display_name == "Alice Doe"


def test_regex_fallback_on_broken_script():
    html = (
        "<html><head><script>window.x = {\"edge_followed_by\":{\"count\":42}, "
        "\"full_name\":\"Al\\u00e9\", \"biography\":\"line1\\nline2\"</script></head>"
        "<body>" + PADDING + "</body></html>"
    )

    fields = extract(html, "alice")

    assert fields is not None
    assert fields.follower_count == 42
    assert fields.display_name == "Alé"
    assert fields.biography == "line1\nline2"
    assert fields.sources["follower_count"] == "regex"


def test_biography_is_clamped():
    fields = extract(json.dumps(_api_payload(bio="x" * 800)), "alice")
    assert fields is not None
    assert len(fields.biography) == 500


@pytest.mark.parametrize(
    "document",
    [
        None,
        "",
        "   ",
        "<html><body>" + PADDING + "</body></html>",
        json.dumps({"data": {"user": None}}),
    ],
)
def test_extract_returns_none_without_usable_fields(document):
    assert extract(document, "alice") is None


def test_zero_followers_and_short_image_is_rejected():
    payload = _api_payload(followers=0)
    user = payload["data"]["user"]
    user["profile_pic_url_hd"] = ""
    user["profile_pic_url"] = "short"

    assert extract(json.dumps(payload), "alice") is None


def test_image_only_profile_is_accepted():
    payload = _api_payload(followers=0)
    fields = extract(json.dumps(payload), "alice")
    assert fields is not None
    assert fields.follower_count == 0
    assert fields.image_url.startswith("https://cdn.example.com/")


def test_login_wall_detection():
    wall = "<html><head><title>Login • Instagram</title></head><body>" + PADDING + "</body></html>"

    assert looks_like_login_wall(wall, "https://www.instagram.com/alice/", "alice") is True
    assert looks_like_login_wall(wall + '{"username":"alice"}', None, "alice") is False
    assert looks_like_login_wall("<html>ok</html>", "https://www.instagram.com/accounts/login/?next=/alice/", "alice")
    assert looks_like_login_wall('<a href="/accounts/login/">Log in</a>', "https://www.instagram.com/alice/", "alice") is False
