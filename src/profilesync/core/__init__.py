"""Stable record and report keys shared by profilesync modules and callers."""

from .keys import (
    K_BIOGRAPHY,
    K_DETAILS,
    K_DISPLAY_NAME,
    K_ERROR,
    K_FOLLOWER_COUNT,
    K_FOLLOWING_COUNT,
    K_HANDLE,
    K_IMAGE_REF,
    K_IS_PRIVATE,
    K_IS_VERIFIED,
    K_LAST_SYNCED_AT,
    K_POST_COUNT,
    K_REASON,
    K_SKIPPED,
    K_STATUS,
    K_UPDATED,
)

PROFILE_KEYS = (
    K_HANDLE,
    K_DISPLAY_NAME,
    K_IMAGE_REF,
    K_FOLLOWER_COUNT,
    K_FOLLOWING_COUNT,
    K_POST_COUNT,
    K_BIOGRAPHY,
    K_IS_PRIVATE,
    K_IS_VERIFIED,
    K_LAST_SYNCED_AT,
)

__all__ = [name for name in globals() if name.startswith("K_")] + ["PROFILE_KEYS"]
