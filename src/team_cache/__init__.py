"""
Team Resolution Cache
=====================

Modules:
- storage: KeyValueStorage, SQLiteStorage, MemoryStorage
- team_resolution_cache: 24h (team number, program) -> team cache
"""

from .storage import (
    KeyValueStorage,
    SQLiteStorage,
    MemoryStorage,
)
from .team_resolution_cache import (
    TeamResolutionCache,
    CacheEntry,
    cache_key,
)

__all__ = [
    "KeyValueStorage",
    "SQLiteStorage",
    "MemoryStorage",
    "TeamResolutionCache",
    "CacheEntry",
    "cache_key",
]
