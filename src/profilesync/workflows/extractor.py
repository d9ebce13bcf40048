"""Profile field extraction from raw profile documents (JSON payloads or HTML).

The source publishes no stable schema, so extraction is a chain of
independent passes. Each pass only fills fields that earlier passes left
empty:

1. structured search over a parsed JSON object graph,
2. the same search over JSON blocks embedded in ``<script>`` tags,
3. human-readable summary text ("1.2K Followers, 300 Following, 40 Posts"),
4. key-pattern regexes against the raw document text,
5. the generic ``og:image`` preview declaration.

Key names and patterns live in :class:`ExtractionRules` so they can be
swapped when the source changes shape without touching the pass order.
"""

from __future__ import annotations

import json
import logging
import re
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bs4 import BeautifulSoup

from .sync_config import (
    BIOGRAPHY_MAX_CHARS,
    LOGIN_REDIRECT_MARKERS,
    LOGIN_WALL_MARKERS,
    MAX_SEARCH_DEPTH,
    MIN_IMAGE_URL_CHARS,
)
from .sync_utils import coerce_count, parse_count, unescape_json_text
from .text_normalize import clamp_text, minimal_text_fix

logger = logging.getLogger(__name__)

_COUNT_FIELDS = ("follower_count", "following_count", "post_count")
_TEXT_FIELDS = ("display_name", "image_url", "biography")
_FLAG_FIELDS = ("is_private", "is_verified")
_ALL_FIELDS = _COUNT_FIELDS + _TEXT_FIELDS + _FLAG_FIELDS

_JSON_STRING = r'"((?:[^"\\]|\\.)*)"'
_ASSIGNMENT_RE = re.compile(r"=\s*(\{.*\}|\[.*\])\s*;?\s*$", re.S)
_TITLE_NAME_RE = re.compile(r"^\s*([^•(]+?)\s*\(@")


@dataclass(frozen=True)
class ExtractionRules:
    """Key names and fallback patterns describing the source's document shape."""

    identity_keys: Tuple[str, ...] = ("username",)
    follower_keys: Tuple[str, ...] = ("edge_followed_by", "follower_count")
    following_keys: Tuple[str, ...] = ("edge_follow", "following_count")
    post_keys: Tuple[str, ...] = ("edge_owner_to_timeline_media", "media_count")
    name_keys: Tuple[str, ...] = ("full_name",)
    image_keys: Tuple[str, ...] = ("profile_pic_url_hd", "hd_profile_pic_url_info", "profile_pic_url")
    bio_keys: Tuple[str, ...] = ("biography",)
    private_keys: Tuple[str, ...] = ("is_private",)
    verified_keys: Tuple[str, ...] = ("is_verified",)
    summary_labels: Dict[str, str] = field(
        default_factory=lambda: {
            "follower_count": r"Followers?",
            "following_count": r"Following",
            "post_count": r"Posts?",
        }
    )
    fallback_patterns: Dict[str, Tuple[str, ...]] = field(
        default_factory=lambda: {
            "follower_count": (
                r'"edge_followed_by"\s*:\s*\{\s*"count"\s*:\s*(\d+)',
                r'"follower_count"\s*:\s*(\d+)',
            ),
            "following_count": (
                r'"edge_follow"\s*:\s*\{\s*"count"\s*:\s*(\d+)',
                r'"following_count"\s*:\s*(\d+)',
            ),
            "post_count": (
                r'"edge_owner_to_timeline_media"\s*:\s*\{\s*"count"\s*:\s*(\d+)',
                r'"media_count"\s*:\s*(\d+)',
            ),
            "biography": (r'"biography"\s*:\s*' + _JSON_STRING,),
            "display_name": (r'"full_name"\s*:\s*' + _JSON_STRING,),
            "image_url": (
                r'"profile_pic_url_hd"\s*:\s*' + _JSON_STRING,
                r'"profile_pic_url"\s*:\s*' + _JSON_STRING,
            ),
            "is_verified": (r'"is_verified"\s*:\s*(true|false)',),
            "is_private": (r'"is_private"\s*:\s*(true|false)',),
        }
    )
    max_depth: int = MAX_SEARCH_DEPTH
    biography_max_chars: int = BIOGRAPHY_MAX_CHARS

    @property
    def count_keys(self) -> Tuple[str, ...]:
        return self.follower_keys + self.following_keys + self.post_keys


DEFAULT_RULES = ExtractionRules()


@dataclass
class ProfileFields:
    """Profile-derived fields extracted from one document; ``image_url`` is raw."""

    handle: str
    display_name: str
    image_url: str = ""
    follower_count: int = 0
    following_count: int = 0
    post_count: int = 0
    biography: str = ""
    is_private: bool = False
    is_verified: bool = False
    sources: Dict[str, str] = field(default_factory=dict, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class _FieldAccumulator:
    """First-writer-wins collector; ``None`` and empty strings never win."""

    def __init__(self) -> None:
        self.values: Dict[str, Any] = {}
        self.sources: Dict[str, str] = {}

    def offer(self, name: str, value: Any, source: str) -> None:
        if name in self.values or value is None:
            return
        if isinstance(value, str) and not value.strip():
            return
        self.values[name] = value
        self.sources[name] = source

    def offer_all(self, values: Dict[str, Any], source: str) -> None:
        for name, value in values.items():
            self.offer(name, value, source)

    def missing(self) -> List[str]:
        return [name for name in _ALL_FIELDS if name not in self.values]


# ---------------------------------------------------------------------------
# Pass 1/2: structured JSON search
# ---------------------------------------------------------------------------


def _is_profile_node(node: Dict[str, Any], rules: ExtractionRules) -> bool:
    has_identity = any(isinstance(node.get(key), str) and node.get(key) for key in rules.identity_keys)
    if not has_identity:
        return False
    return any(key in node for key in rules.count_keys)


def find_profile_node(
    payload: Any,
    handle: Optional[str] = None,
    rules: ExtractionRules = DEFAULT_RULES,
) -> Optional[Dict[str, Any]]:
    """Breadth-first, depth-bounded search for a dict holding identity + count keys.

    A node whose identity equals ``handle`` is preferred; otherwise the
    shallowest match wins.
    """

    first_match: Optional[Dict[str, Any]] = None
    queue: deque = deque([(payload, 0)])
    while queue:
        node, depth = queue.popleft()
        if depth > rules.max_depth:
            continue
        if isinstance(node, dict):
            if _is_profile_node(node, rules):
                if handle is None or _node_identity(node, rules) == handle:
                    return node
                if first_match is None:
                    first_match = node
            children: Iterable[Any] = node.values()
        elif isinstance(node, list):
            children = node
        else:
            continue
        for child in children:
            if isinstance(child, (dict, list)):
                queue.append((child, depth + 1))
    return first_match


def _node_identity(node: Dict[str, Any], rules: ExtractionRules) -> Optional[str]:
    for key in rules.identity_keys:
        value = node.get(key)
        if isinstance(value, str) and value:
            return value.lower()
    return None


def _first_present(node: Dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if key in node and node[key] is not None:
            return node[key]
    return None


def _image_from(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("url")
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _flag_from(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in {"true", "false"}:
        return value.lower() == "true"
    return None


def fields_from_node(node: Dict[str, Any], rules: ExtractionRules = DEFAULT_RULES) -> Dict[str, Any]:
    """Map a matched profile node onto field names (absent values stay ``None``)."""

    name = _first_present(node, rules.name_keys)
    bio = _first_present(node, rules.bio_keys)
    image = None
    for key in rules.image_keys:
        image = _image_from(node.get(key))
        if image:
            break
    return {
        "follower_count": coerce_count(_first_present(node, rules.follower_keys)),
        "following_count": coerce_count(_first_present(node, rules.following_keys)),
        "post_count": coerce_count(_first_present(node, rules.post_keys)),
        "display_name": name if isinstance(name, str) else None,
        "image_url": image,
        "biography": bio if isinstance(bio, str) else None,
        "is_private": _flag_from(_first_present(node, rules.private_keys)),
        "is_verified": _flag_from(_first_present(node, rules.verified_keys)),
    }


def _parse_json(text: str) -> Optional[Any]:
    stripped = (text or "").strip()
    if not stripped or stripped[0] not in "{[":
        return None
    try:
        return json.loads(stripped)
    except ValueError:
        return None


def _script_payloads(soup: BeautifulSoup) -> List[Any]:
    payloads: List[Any] = []
    for script in soup.find_all("script"):
        body = script.string or script.get_text() or ""
        body = body.strip()
        if not body or "{" not in body:
            continue
        parsed = _parse_json(body)
        if parsed is None:
            match = _ASSIGNMENT_RE.search(body)
            if match:
                parsed = _parse_json(match.group(1))
        if parsed is not None:
            payloads.append(parsed)
    return payloads


def _scan_scripts(
    soup: BeautifulSoup,
    handle: str,
    rules: ExtractionRules,
) -> Optional[Dict[str, Any]]:
    """Fields from the best embedded JSON block.

    Blocks whose node belongs to ``handle`` outrank blocks that only hold some
    other profile. Within a tier the first block with followers wins. When no
    block has followers the first one is returned with its zero counts
    dropped, so the summary and regex passes can still fill them.
    """

    owned: List[Dict[str, Any]] = []
    others: List[Dict[str, Any]] = []
    for payload in _script_payloads(soup):
        node = find_profile_node(payload, handle, rules)
        if node is None:
            continue
        values = fields_from_node(node, rules)
        if _node_identity(node, rules) == handle:
            owned.append(values)
        else:
            others.append(values)

    candidates = owned or others
    for values in candidates:
        if (values.get("follower_count") or 0) > 0:
            return values
    if not candidates:
        return None
    fallback = dict(candidates[0])
    for name in _COUNT_FIELDS:
        if not fallback.get(name):
            fallback[name] = None
    return fallback


# ---------------------------------------------------------------------------
# Pass 3: summary text
# ---------------------------------------------------------------------------


def parse_summary_counts(text: str, rules: ExtractionRules = DEFAULT_RULES) -> Dict[str, Optional[int]]:
    """Extract ``<number><K|M>? <Label>`` counts from a human-readable summary."""

    counts: Dict[str, Optional[int]] = {}
    for name, label in rules.summary_labels.items():
        pattern = re.compile(r"(?<![\w.,])([0-9][0-9.,]*)\s*([KkMm])?\s+" + label + r"\b", re.I)
        match = pattern.search(text or "")
        if not match:
            counts[name] = None
            continue
        token = match.group(1).rstrip(".,") + (match.group(2) or "")
        counts[name] = parse_count(token)
    return counts


def _meta_content(soup: BeautifulSoup, *, name: Optional[str] = None, prop: Optional[str] = None) -> Optional[str]:
    attrs = {"name": name} if name else {"property": prop}
    tag = soup.find("meta", attrs=attrs)
    if tag is None:
        return None
    content = tag.get("content")
    if isinstance(content, str) and content.strip():
        return content.strip()
    return None


def _name_from_title(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    match = _TITLE_NAME_RE.match(text)
    if match:
        return match.group(1).strip()
    return None


def _summary_fields(
    soup: Optional[BeautifulSoup],
    document: str,
    rules: ExtractionRules,
) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    if soup is None:
        texts = [document]
        name = None
    else:
        texts = [
            text
            for text in (
                _meta_content(soup, name="description"),
                _meta_content(soup, prop="og:description"),
            )
            if text
        ]
        title = soup.title.get_text() if soup.title else None
        name = _name_from_title(title) or _name_from_title(_meta_content(soup, prop="og:title"))
    for text in texts:
        for key, value in parse_summary_counts(text, rules).items():
            if values.get(key) is None:
                values[key] = value
    values["display_name"] = name
    return values


# ---------------------------------------------------------------------------
# Pass 4/5: raw regexes and meta image
# ---------------------------------------------------------------------------


def _regex_fields(document: str, wanted: Iterable[str], rules: ExtractionRules) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    for name in wanted:
        for pattern in rules.fallback_patterns.get(name, ()):
            match = re.search(pattern, document)
            if not match:
                continue
            raw = match.group(1)
            if name in _COUNT_FIELDS:
                values[name] = coerce_count(raw)
            elif name in _FLAG_FIELDS:
                values[name] = raw == "true"
            else:
                values[name] = unescape_json_text(raw)
            break
    return values


def _meta_image(soup: Optional[BeautifulSoup]) -> Optional[str]:
    if soup is None:
        return None
    content = _meta_content(soup, prop="og:image") or _meta_content(soup, name="og:image")
    if not content:
        return None
    return content.replace("\\u0026", "&").strip()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def _looks_like_markup(document: str) -> bool:
    return "<" in document and ">" in document


def looks_like_login_wall(text: str, final_url: Optional[str], handle: str) -> bool:
    """True when a response is a login interstitial with no identity markers for ``handle``."""

    lowered = (text or "").lower()
    final = (final_url or "").lower()
    redirected = any(marker in final for marker in LOGIN_REDIRECT_MARKERS)
    walled = redirected or any(marker in lowered for marker in LOGIN_WALL_MARKERS)
    if not walled:
        return False
    handle = handle.lower()
    markers = (f'"username":"{handle}"', f'"username": "{handle}"', f"(@{handle})")
    return not any(marker in lowered for marker in markers)


def extract(
    document: Optional[str],
    handle: str,
    rules: ExtractionRules = DEFAULT_RULES,
) -> Optional[ProfileFields]:
    """Extract profile fields from ``document``; ``None`` when nothing usable was found."""

    if not document or not document.strip():
        return None
    acc = _FieldAccumulator()
    soup: Optional[BeautifulSoup] = None

    payload = _parse_json(document)
    if payload is not None:
        node = find_profile_node(payload, handle, rules)
        if node is not None:
            acc.offer_all(fields_from_node(node, rules), "json")
    elif _looks_like_markup(document):
        soup = BeautifulSoup(document, "lxml")
        scripted = _scan_scripts(soup, handle, rules)
        if scripted:
            acc.offer_all(scripted, "script_json")

    if payload is None:
        acc.offer_all(_summary_fields(soup, document, rules), "summary")

    missing = acc.missing()
    if missing:
        acc.offer_all(_regex_fields(document, missing, rules), "regex")

    if "image_url" not in acc.values:
        acc.offer("image_url", _meta_image(soup), "meta_image")

    values = acc.values
    followers = values.get("follower_count") or 0
    image_url = (values.get("image_url") or "").strip()
    if followers <= 0 and len(image_url) <= MIN_IMAGE_URL_CHARS:
        logger.debug("No usable profile fields for @%s (sources=%s)", handle, acc.sources)
        return None

    bio = minimal_text_fix(values.get("biography") or "")
    name = minimal_text_fix(values.get("display_name") or "").strip()
    return ProfileFields(
        handle=handle,
        display_name=name or handle,
        image_url=image_url,
        follower_count=followers,
        following_count=values.get("following_count") or 0,
        post_count=values.get("post_count") or 0,
        biography=clamp_text(bio, rules.biography_max_chars),
        is_private=bool(values.get("is_private", False)),
        is_verified=bool(values.get("is_verified", False)),
        sources=dict(acc.sources),
    )


__all__ = [
    "ExtractionRules",
    "DEFAULT_RULES",
    "ProfileFields",
    "extract",
    "find_profile_node",
    "fields_from_node",
    "parse_summary_counts",
    "looks_like_login_wall",
]
