"""High-level exports for the profile synchronization workflows."""

from .extractor import DEFAULT_RULES, ExtractionRules, ProfileFields, extract
from .image_proxy import ImageProxy, ProxiedImage
from .image_utils import DEFAULT_SANITIZER, ImageSanitizer, placeholder_for, sanitize
from .scheduler import BatchRefreshScheduler, CycleReport
from .store import ProfileRecord, ProfileStore
from .strategies import ResolutionReport, Strategy, StrategyAttempt, StrategyRunner, build_strategies
from .sync_config import SyncConfig
from .sync_utils import InvalidHandleError, normalize_handle
from .synchronizer import ProfileSynchronizer

__all__ = [
    "DEFAULT_RULES",
    "ExtractionRules",
    "ProfileFields",
    "extract",
    "ImageProxy",
    "ProxiedImage",
    "DEFAULT_SANITIZER",
    "ImageSanitizer",
    "placeholder_for",
    "sanitize",
    "BatchRefreshScheduler",
    "CycleReport",
    "ProfileRecord",
    "ProfileStore",
    "ResolutionReport",
    "Strategy",
    "StrategyAttempt",
    "StrategyRunner",
    "build_strategies",
    "SyncConfig",
    "InvalidHandleError",
    "normalize_handle",
    "ProfileSynchronizer",
]
