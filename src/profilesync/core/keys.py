"""Shared record keys to avoid magic strings across profilesync modules."""

from __future__ import annotations

# Profile record keys
K_HANDLE = "handle"
K_DISPLAY_NAME = "display_name"
K_IMAGE_REF = "image_ref"
K_FOLLOWER_COUNT = "follower_count"
K_FOLLOWING_COUNT = "following_count"
K_POST_COUNT = "post_count"
K_BIOGRAPHY = "biography"
K_IS_PRIVATE = "is_private"
K_IS_VERIFIED = "is_verified"
K_LAST_SYNCED_AT = "last_synced_at"

# Batch report keys
K_UPDATED = "updated"
K_SKIPPED = "skipped"
K_DETAILS = "details"
K_STATUS = "status"
K_REASON = "reason"
K_ERROR = "error"
