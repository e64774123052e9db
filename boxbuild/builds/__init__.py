"""Build orchestration module.

This module handles:
- Executing build plans step by step against an engine adapter
- Per-step cache keys and the memory/SQL layer cache
- Plan context digests and container content lookups
- Concurrent multi-plan builds
"""

from boxbuild.builds.cache import CacheStore, MemoryCacheStore, SqlCacheStore
from boxbuild.builds.multi import BuildJob, MultiBuild
from boxbuild.builds.orchestrator import BuildConfig, Builder

__all__ = [
    "BuildConfig",
    "BuildJob",
    "Builder",
    "CacheStore",
    "MemoryCacheStore",
    "MultiBuild",
    "SqlCacheStore",
]
