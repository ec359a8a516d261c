"""
TEAM RESOLUTION CACHE
=====================

(team number, program) -> resolved team id + payload, kept for 24h.

- Memory is the source of truth; the whole map is mirrored as one JSON
  blob under "robotevents_team_cache" in a KeyValueStorage.
- Expired entries are dropped lazily on read.
- Writes are coalesced: one background drain task per burst of changes,
  storage calls run in a worker thread. Persistence errors are logged only.

Blob format:
    {"229V-VEX V5 Robotics Competition": {"id": 1234, "data": {...}, "timestamp": 1717000000000}}
"""

import asyncio
import json
import time
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from config import TEAM_CACHE_TTL_HOURS, TEAM_CACHE_STORAGE_KEY
from utils.logger import get_logger

from .storage import KeyValueStorage, SQLiteStorage

logger = get_logger("TEAM_CACHE")


@dataclass
class CacheEntry:
    id: int
    data: Any
    timestamp: float          # epoch milliseconds


def cache_key(team_number: str, program: str) -> str:
    return f"{team_number}-{program}"


class TeamResolutionCache:
    """
    Persisted, time-bounded team lookup cache

    Usage:
        cache = TeamResolutionCache(SQLiteStorage())
        cache.initialize()

        entry = cache.get("229V", "VEX V5 Robotics Competition")
        if entry is None:
            cache.put("229V", "VEX V5 Robotics Competition", 1234, team)

        await cache.flush()       # before shutdown
    """

    def __init__(
        self,
        storage: Optional[KeyValueStorage] = None,
        ttl_hours: float = TEAM_CACHE_TTL_HOURS,
        storage_key: str = TEAM_CACHE_STORAGE_KEY,
    ):
        self.storage = storage if storage is not None else SQLiteStorage()
        self.ttl_ms = ttl_hours * 3600 * 1000
        self.storage_key = storage_key

        self._entries: Dict[str, CacheEntry] = {}
        self._initialized = False
        self._dirty = False
        self._writer: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._entries)

    def _now_ms(self) -> float:
        return time.time() * 1000

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def initialize(self):
        """Load the persisted blob once (missing or corrupt -> empty cache)"""
        if self._initialized:
            return
        self._initialized = True

        try:
            raw = self.storage.get_item(self.storage_key)
        except Exception as e:
            logger.error(f"Failed to load team cache from storage: {e}")
            return

        if not raw:
            return

        try:
            blob = json.loads(raw)
        except ValueError as e:
            logger.warning(f"Corrupt team cache blob ignored: {e}")
            return

        if not isinstance(blob, dict):
            logger.warning("Team cache blob is not an object, ignored")
            return

        for key, value in blob.items():
            try:
                self._entries[key] = CacheEntry(
                    id=value["id"],
                    data=value.get("data"),
                    timestamp=float(value["timestamp"]),
                )
            except (KeyError, TypeError, ValueError, AttributeError):
                logger.debug(f"Skipping malformed cache entry {key}")

        logger.info(f"Loaded {len(self._entries)} cached teams from storage")

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def get(self, team_number: str, program: str) -> Optional[CacheEntry]:
        key = cache_key(team_number, program)
        entry = self._entries.get(key)
        if entry is None:
            return None

        if self._now_ms() - entry.timestamp < self.ttl_ms:
            logger.debug(f"Using cached team data for {team_number} (ID: {entry.id})")
            return entry

        logger.debug(f"Cached data for {team_number} has expired, removing")
        del self._entries[key]
        self._schedule_persist()
        return None

    def put(self, team_number: str, program: str, team_id: int, data: Any):
        self._entries[cache_key(team_number, program)] = CacheEntry(
            id=team_id, data=data, timestamp=self._now_ms()
        )
        logger.debug(f"Cached team data for {team_number} (ID: {team_id})")
        self._schedule_persist()

    def clear(self):
        self._entries.clear()
        logger.info("Team cache cleared")
        self._schedule_persist()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _serialize(self) -> Optional[str]:
        if not self._entries:
            return None
        return json.dumps({key: asdict(entry) for key, entry in self._entries.items()})

    def _write(self, snapshot: Optional[str]):
        if snapshot is None:
            self.storage.remove_item(self.storage_key)
        else:
            self.storage.set_item(self.storage_key, snapshot)

    def _schedule_persist(self):
        self._dirty = True

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # no event loop: write inline
            self._dirty = False
            try:
                self._write(self._serialize())
            except Exception as e:
                logger.error(f"Failed to save team cache to storage: {e}")
            return

        if self._writer is None or self._writer.done():
            self._writer = loop.create_task(self._drain())

    async def _drain(self):
        while self._dirty:
            self._dirty = False
            snapshot = self._serialize()
            try:
                await asyncio.to_thread(self._write, snapshot)
                logger.debug(f"Saved {len(self._entries)} cached teams to storage")
            except Exception as e:
                logger.error(f"Failed to save team cache to storage: {e}")

    async def flush(self):
        """Wait for pending background writes"""
        if self._writer is not None and not self._writer.done():
            await self._writer
