"""Durable profile storage keyed by handle.

Uses ``sqlite3`` with single-statement upserts, so concurrent writers for the
same handle converge on whichever write lands last without in-process locks.
``last_synced_at`` is stored as fixed-width UTC text and never moves backwards.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..core import (
    PROFILE_KEYS,
    K_BIOGRAPHY,
    K_DISPLAY_NAME,
    K_FOLLOWER_COUNT,
    K_FOLLOWING_COUNT,
    K_HANDLE,
    K_IMAGE_REF,
    K_IS_PRIVATE,
    K_IS_VERIFIED,
    K_LAST_SYNCED_AT,
    K_POST_COUNT,
)
from .sync_utils import format_timestamp, normalize_handle, parse_timestamp

logger = logging.getLogger(__name__)

_COLUMNS = PROFILE_KEYS

# Keeps the later of the stored and incoming timestamps.
_LATEST_SYNC = (
    "CASE WHEN profiles.last_synced_at IS NULL "
    "OR excluded.last_synced_at > profiles.last_synced_at "
    "THEN excluded.last_synced_at ELSE profiles.last_synced_at END"
)


@dataclass(frozen=True)
class ProfileRecord:
    """The canonical stored profile; ``handle`` is the lowercase identity."""

    handle: str
    display_name: str
    image_ref: str
    follower_count: int = 0
    following_count: int = 0
    post_count: int = 0
    biography: str = ""
    is_private: bool = False
    is_verified: bool = False
    last_synced_at: Optional[datetime] = None

    def with_sync_time(self, when: Optional[datetime]) -> "ProfileRecord":
        return replace(self, last_synced_at=when)

    def to_dict(self) -> Dict[str, Any]:
        return {
            K_HANDLE: self.handle,
            K_DISPLAY_NAME: self.display_name,
            K_IMAGE_REF: self.image_ref,
            K_FOLLOWER_COUNT: self.follower_count,
            K_FOLLOWING_COUNT: self.following_count,
            K_POST_COUNT: self.post_count,
            K_BIOGRAPHY: self.biography,
            K_IS_PRIVATE: self.is_private,
            K_IS_VERIFIED: self.is_verified,
            K_LAST_SYNCED_AT: format_timestamp(self.last_synced_at),
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ProfileRecord":
        return cls(
            handle=row[K_HANDLE],
            display_name=row[K_DISPLAY_NAME] or row[K_HANDLE],
            image_ref=row[K_IMAGE_REF] or "",
            follower_count=int(row[K_FOLLOWER_COUNT] or 0),
            following_count=int(row[K_FOLLOWING_COUNT] or 0),
            post_count=int(row[K_POST_COUNT] or 0),
            biography=row[K_BIOGRAPHY] or "",
            is_private=bool(row[K_IS_PRIVATE]),
            is_verified=bool(row[K_IS_VERIFIED]),
            last_synced_at=parse_timestamp(row[K_LAST_SYNCED_AT]),
        )

    def _params(self) -> Dict[str, Any]:
        params = self.to_dict()
        params[K_IS_PRIVATE] = int(self.is_private)
        params[K_IS_VERIFIED] = int(self.is_verified)
        return params


class ProfileStore:
    """SQLite-backed profile table with atomic upsert-by-handle."""

    def __init__(self, path: Union[str, Path] = ":memory:") -> None:
        self.path = str(path)
        self._conn = sqlite3.connect(self.path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_tables()

    def _ensure_tables(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS profiles (
                handle TEXT PRIMARY KEY,
                display_name TEXT NOT NULL,
                image_ref TEXT NOT NULL,
                follower_count INTEGER NOT NULL DEFAULT 0,
                following_count INTEGER NOT NULL DEFAULT 0,
                post_count INTEGER NOT NULL DEFAULT 0,
                biography TEXT NOT NULL DEFAULT '',
                is_private INTEGER NOT NULL DEFAULT 0,
                is_verified INTEGER NOT NULL DEFAULT 0,
                last_synced_at TEXT
            );
            """
        )
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_profiles_last_synced_at ON profiles (last_synced_at);"
        )
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "ProfileStore":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def get(self, handle: str) -> Optional[ProfileRecord]:
        key = normalize_handle(handle)
        row = self._conn.execute("SELECT * FROM profiles WHERE handle = ?", (key,)).fetchone()
        return ProfileRecord.from_row(row) if row else None

    def upsert(self, record: ProfileRecord) -> ProfileRecord:
        """Insert or fully overwrite the synchronized fields of ``record.handle``."""

        record = replace(record, handle=normalize_handle(record.handle))
        columns = ", ".join(_COLUMNS)
        placeholders = ", ".join(f":{name}" for name in _COLUMNS)
        updates = ", ".join(
            f"{name} = excluded.{name}" for name in _COLUMNS if name not in {K_HANDLE, K_LAST_SYNCED_AT}
        )
        self._conn.execute(
            f"INSERT INTO profiles ({columns}) VALUES ({placeholders}) "
            f"ON CONFLICT(handle) DO UPDATE SET {updates}, last_synced_at = {_LATEST_SYNC}",
            record._params(),
        )
        self._conn.commit()
        stored = self.get(record.handle)
        return stored if stored is not None else record

    def touch(self, placeholder: ProfileRecord, when: datetime) -> ProfileRecord:
        """Advance ``last_synced_at`` only, creating ``placeholder`` when the handle is unknown."""

        record = replace(placeholder, handle=normalize_handle(placeholder.handle), last_synced_at=when)
        columns = ", ".join(_COLUMNS)
        placeholders = ", ".join(f":{name}" for name in _COLUMNS)
        self._conn.execute(
            f"INSERT INTO profiles ({columns}) VALUES ({placeholders}) "
            f"ON CONFLICT(handle) DO UPDATE SET last_synced_at = {_LATEST_SYNC}",
            record._params(),
        )
        self._conn.commit()
        logger.debug("Marked @%s attempted at %s", record.handle, format_timestamp(when))
        stored = self.get(record.handle)
        return stored if stored is not None else record

    def enqueue(self, placeholder: ProfileRecord) -> bool:
        """Register a never-synced handle; returns False when it already exists."""

        record = replace(placeholder, handle=normalize_handle(placeholder.handle), last_synced_at=None)
        columns = ", ".join(_COLUMNS)
        placeholders = ", ".join(f":{name}" for name in _COLUMNS)
        cur = self._conn.execute(
            f"INSERT INTO profiles ({columns}) VALUES ({placeholders}) ON CONFLICT(handle) DO NOTHING",
            record._params(),
        )
        self._conn.commit()
        return cur.rowcount > 0

    def select_due(self, now: datetime, ttl: timedelta, limit: int) -> List[ProfileRecord]:
        """Stale or never-synced records, least recently synced first (nulls first)."""

        cutoff = format_timestamp(now - ttl)
        rows = self._conn.execute(
            """
            SELECT * FROM profiles
            WHERE last_synced_at IS NULL OR last_synced_at <= ?
            ORDER BY last_synced_at IS NOT NULL, last_synced_at ASC, handle ASC
            LIMIT ?
            """,
            (cutoff, max(0, int(limit))),
        ).fetchall()
        return [ProfileRecord.from_row(row) for row in rows]

    def count(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) FROM profiles").fetchone()
        return int(row[0])


__all__ = ["ProfileRecord", "ProfileStore"]
