"""
KEY POOL
========

One ordered set of RobotEvents API keys for one traffic class.

Responsibilities:
- Rotation (every CALLS_BEFORE_ROTATION selections when >1 key)
- Quarantine of failing keys (failed index set)
- Cycle accounting (a cycle = every key failed once)
- Hourly reset of the failed set

Architecture:
- Keys loaded from environment variables (see load_pool_keys)
- State lives in memory only; reset once per process start
- Selection is synchronous: no await between reading and advancing the index
"""

import os
import time
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from config import (
    CALLS_BEFORE_ROTATION,
    MAX_CYCLES_BEFORE_FALLBACK,
    FAILED_KEY_RESET_SECONDS,
    MAX_NUMBERED_KEYS,
    GENERAL_KEY_PREFIX,
    TEAM_BROWSER_KEY_PREFIX,
    LEGACY_KEY_ENV,
)
from utils.logger import get_logger

logger = get_logger("KEY_POOL")


# ============================================================================
# Enums
# ============================================================================

class TrafficClass(Enum):
    """Which pool a request is meant for"""
    GENERAL = "general"
    SECONDARY = "team_browser"


# ============================================================================
# Key Pool
# ============================================================================

class KeyPool:
    """
    Ordered credential set with rotation and failure quarantine

    Usage:
        pool = KeyPool("general", ["key_a", "key_b"])

        index, key = pool.next_index()
        ...
        pool.mark_failed(index)     # login page came back
        pool.mark_success()         # JSON came back
    """

    def __init__(
        self,
        name: str,
        keys: List[str],
        calls_before_rotation: int = CALLS_BEFORE_ROTATION,
        max_cycles_before_fallback: int = MAX_CYCLES_BEFORE_FALLBACK,
        failed_reset_seconds: float = FAILED_KEY_RESET_SECONDS,
    ):
        self.name = name
        self.keys: List[str] = [k for k in keys if k]
        self.calls_before_rotation = calls_before_rotation
        self.max_cycles_before_fallback = max_cycles_before_fallback
        self.failed_reset_seconds = failed_reset_seconds

        self.current_index = 0
        self.failed: Set[int] = set()
        self.cycle_attempts = 0
        self.successful_calls_in_cycle = 0
        self.consecutive_failed_cycles = 0
        self.calls_since_rotation = 0
        self.usage_count = 0
        self.last_failed_reset_time = time.monotonic()

    def __len__(self) -> int:
        return len(self.keys)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def next(self) -> Optional[str]:
        """Return the next usable key (None only for an empty pool)"""
        selected = self.next_index()
        return selected[1] if selected else None

    def next_index(self, stop_when_exhausted: bool = False) -> Optional[Tuple[int, str]]:
        """
        Select a key and return (index, key).

        When every index is failed, the cycle is closed and counted. With
        stop_when_exhausted=True, a cycle that leaves the pool exhausted
        returns None so the caller can fall back; otherwise the pool
        restarts at index 0.
        """
        if not self.keys:
            return None

        self._maybe_periodic_reset()

        if self.calls_since_rotation >= self.calls_before_rotation and len(self.keys) > 1:
            old_index = self.current_index
            self.current_index = (self.current_index + 1) % len(self.keys)
            self.calls_since_rotation = 0
            logger.debug(
                f"[{self.name}] auto-rotating key #{old_index + 1} -> #{self.current_index + 1} "
                f"after {self.calls_before_rotation} calls"
            )

        for _ in range(len(self.keys)):
            if self.current_index not in self.failed:
                return self._take(self.current_index)
            logger.debug(f"[{self.name}] skipping key #{self.current_index + 1} (failed)")
            self.current_index = (self.current_index + 1) % len(self.keys)

        self._close_cycle()

        if stop_when_exhausted and self.is_exhausted():
            return None

        return self.restart_cycle()

    def restart_cycle(self) -> Tuple[int, str]:
        """Clear the failed set and hand out index 0 again"""
        logger.debug(
            f"[{self.name}] new cycle (consecutive failed cycles: "
            f"{self.consecutive_failed_cycles}/{self.max_cycles_before_fallback})"
        )
        self.failed.clear()
        self.current_index = 0
        self.successful_calls_in_cycle = 0
        return self._take(0)

    def _take(self, index: int) -> Tuple[int, str]:
        self.usage_count += 1
        self.calls_since_rotation += 1
        logger.debug(
            f"[{self.name}] using key #{index + 1}/{len(self.keys)} "
            f"(failed: {len(self.failed)}/{len(self.keys)})"
        )
        return index, self.keys[index]

    def _close_cycle(self):
        self.cycle_attempts += 1

        if self.successful_calls_in_cycle == 0:
            self.consecutive_failed_cycles += 1
            logger.warning(
                f"[{self.name}] cycle {self.cycle_attempts} completed with 0 successful calls "
                f"(consecutive failed cycles: {self.consecutive_failed_cycles})"
            )
        else:
            logger.debug(
                f"[{self.name}] cycle {self.cycle_attempts} completed with "
                f"{self.successful_calls_in_cycle} successful calls"
            )
            self.consecutive_failed_cycles = 0

    def _maybe_periodic_reset(self):
        now = time.monotonic()
        if now - self.last_failed_reset_time > self.failed_reset_seconds:
            logger.info(f"[{self.name}] periodic reset of failed keys and cycle tracking")
            self._clear_cycle_state()
            self.last_failed_reset_time = now

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def mark_failed(self, index: int):
        """Quarantine one key until the cycle closes or the hourly reset"""
        if not self.keys or not 0 <= index < len(self.keys):
            return

        logger.warning(f"[{self.name}] marking key #{index + 1} as failed")
        self.failed.add(index)

        if self.current_index == index:
            self.current_index = (index + 1) % len(self.keys)

    def mark_success(self):
        self.successful_calls_in_cycle += 1

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def is_exhausted(self) -> bool:
        return self.consecutive_failed_cycles >= self.max_cycles_before_fallback

    def _clear_cycle_state(self):
        # rotation position is left where it is
        self.failed.clear()
        self.cycle_attempts = 0
        self.successful_calls_in_cycle = 0
        self.consecutive_failed_cycles = 0

    def reset_cycles(self):
        """Clear failed set, index and cycle counters"""
        self._clear_cycle_state()
        self.current_index = 0

    def reset(self):
        """Full reset (process start)"""
        self.reset_cycles()
        self.calls_since_rotation = 0
        self.last_failed_reset_time = time.monotonic()

    def reset_usage(self):
        self.usage_count = 0

    def get_status(self) -> Dict:
        """Pool state without any secret"""
        return {
            "name": self.name,
            "total_keys": len(self.keys),
            "current_key": self.current_index + 1 if self.keys else 0,
            "failed_keys": len(self.failed),
            "usage_count": self.usage_count,
            "cycle_attempts": self.cycle_attempts,
            "successful_calls_in_cycle": self.successful_calls_in_cycle,
            "consecutive_failed_cycles": self.consecutive_failed_cycles,
            "exhausted": self.is_exhausted(),
        }


# ============================================================================
# Environment loading
# ============================================================================

def load_pool_keys(prefix: str, legacy_env: Optional[str] = None) -> List[str]:
    """
    Read PREFIX1..PREFIX20 in order (gaps allowed).

    legacy_env is only consulted when no numbered key is set.
    """
    keys = []
    for i in range(1, MAX_NUMBERED_KEYS + 1):
        value = os.environ.get(f"{prefix}{i}", "").strip()
        if value:
            keys.append(value)

    if not keys and legacy_env:
        value = os.environ.get(legacy_env, "").strip()
        if value:
            keys.append(value)

    return keys


def load_general_keys() -> List[str]:
    keys = load_pool_keys(GENERAL_KEY_PREFIX, LEGACY_KEY_ENV)
    if not keys:
        logger.warning("No general API keys configured, requests will be sent unauthenticated")
    else:
        logger.info(f"Loaded {len(keys)} general API key(s)")
    return keys


def load_team_browser_keys() -> List[str]:
    keys = load_pool_keys(TEAM_BROWSER_KEY_PREFIX)
    if not keys:
        logger.info("No team browser API keys found, team browser traffic will use general keys")
    else:
        logger.info(f"Loaded {len(keys)} team browser API key(s)")
    return keys


# ============================================================================
# Module exports
# ============================================================================

__all__ = [
    "KeyPool",
    "TrafficClass",
    "load_pool_keys",
    "load_general_keys",
    "load_team_browser_keys",
]
