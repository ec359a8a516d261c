"""
POOL MANAGER
============

Central manager for the RobotEvents API key pools.

Single entry point for credential selection.
Owns the general pool, the team browser pool and the usage tracker.

Usage:
    pool = get_pool_manager()

    acq = pool.get_credential(TrafficClass.GENERAL)
    headers = {"Authorization": f"Bearer {acq.key}"} if acq.success else {}
    ...
    pool.mark_success(acq, latency_ms=125)   # JSON came back
    pool.mark_failed(acq)                    # login page came back

Features:
- Rotation inside each pool
- General -> team browser fallback after repeated dead cycles
- Team browser -> general when no team browser key is configured
- Degraded mode when every configured pool is exhausted
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from utils.logger import get_logger

from .key_pool import (
    KeyPool,
    TrafficClass,
    load_general_keys,
    load_team_browser_keys,
)
from .usage_tracker import UsageTracker, key_label

logger = get_logger("POOL_MANAGER")


# ============================================================================
# Configuration
# ============================================================================

GENERAL_POOL = "general"
SECONDARY_POOL = "team_browser"

DEGRADED_MESSAGE = (
    "All API keys have been rate-limited or are unavailable. "
    "Some features may be temporarily limited. "
    "This will reset automatically when you restart the app, "
    "or keys may recover within an hour."
)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class KeyAcquisition:
    """Result of acquiring a key"""
    success: bool
    key: Optional[str] = None          # Actual API key value
    pool: Optional[str] = None         # "general" / "team_browser"
    index: Optional[int] = None        # position inside that pool

    # Failure info ("no_keys", "pool_exhausted")
    reason: Optional[str] = None

    @property
    def key_number(self) -> Optional[int]:
        return self.index + 1 if self.index is not None else None

    @property
    def key_id(self) -> Optional[str]:
        if self.pool is None or self.index is None:
            return None
        return key_label(self.pool, self.index)


# ============================================================================
# Pool Manager
# ============================================================================

class KeyPoolManager:
    """
    Central API key pool manager

    Usage:
        manager = KeyPoolManager(["k1", "k2"], ["tb1"])

        acq = manager.get_credential(TrafficClass.SECONDARY)
        if acq.success:
            ...
        manager.mark_success(acq, latency_ms=90)

        if manager.is_degraded():
            info = manager.get_degraded_info()
    """

    def __init__(
        self,
        general_keys: Optional[List[str]] = None,
        secondary_keys: Optional[List[str]] = None,
        tracker: Optional[UsageTracker] = None,
        **pool_options
    ):
        self.general = KeyPool(GENERAL_POOL, general_keys or [], **pool_options)
        self.secondary = KeyPool(SECONDARY_POOL, secondary_keys or [], **pool_options)
        self.tracker = tracker or UsageTracker()

        self.global_failure_timestamp: Optional[float] = None
        self.notification_shown = False

        logger.info(
            f"Pool manager ready: {len(self.general)} general key(s), "
            f"{len(self.secondary)} team browser key(s)"
        )

    @classmethod
    def from_env(cls) -> "KeyPoolManager":
        """Build from ROBOTEVENTS_API_KEY_n / ROBOTEVENTS_TEAM_BROWSER_KEY_n"""
        return cls(load_general_keys(), load_team_browser_keys())

    def _pool(self, name: Optional[str]) -> Optional[KeyPool]:
        if name == GENERAL_POOL:
            return self.general
        if name == SECONDARY_POOL:
            return self.secondary
        return None

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def get_credential(
        self,
        traffic_class: TrafficClass = TrafficClass.GENERAL,
        allow_fallback: bool = True
    ) -> KeyAcquisition:
        """
        Select a key for one dispatch

        Args:
            traffic_class: Pool the request belongs to
            allow_fallback: General traffic may move to the team browser pool

        Returns:
            KeyAcquisition (success=False means: send without auth)
        """
        if traffic_class == TrafficClass.SECONDARY:
            return self._secondary_credential()
        return self._general_credential(allow_fallback)

    def _general_credential(self, allow_fallback: bool) -> KeyAcquisition:
        if not len(self.general):
            if allow_fallback and len(self.secondary):
                logger.warning("No general keys available, falling back to team browser pool")
                acq = self._select_secondary()
                if not acq.success:
                    self.handle_all_exhausted()
                return acq
            return KeyAcquisition(success=False, reason="no_keys")

        selected = self.general.next_index(stop_when_exhausted=True)
        if selected is not None:
            return self._acquired(self.general, selected)

        # general pool just closed its last allowed dead cycle
        if allow_fallback and len(self.secondary):
            logger.warning(
                f"All general keys failed for {self.general.consecutive_failed_cycles} "
                f"consecutive cycles, falling back to team browser pool"
            )
            acq = self._select_secondary()
            if not acq.success:
                self.handle_all_exhausted()
            self.general.reset_cycles()
            return acq

        if not len(self.secondary):
            self.handle_all_exhausted()

        return self._acquired(self.general, self.general.restart_cycle())

    def _secondary_credential(self) -> KeyAcquisition:
        if not len(self.secondary):
            logger.debug("No team browser keys, using general pool without fallback")
            return self._general_credential(allow_fallback=False)

        acq = self._select_secondary()
        if not acq.success and (not len(self.general) or self.general.is_exhausted()):
            self.handle_all_exhausted()
        return acq

    def _select_secondary(self) -> KeyAcquisition:
        selected = self.secondary.next_index(stop_when_exhausted=True)
        if selected is not None:
            return self._acquired(self.secondary, selected)

        logger.error(
            f"All team browser keys failed for {self.secondary.consecutive_failed_cycles} "
            f"consecutive cycles with no successful calls"
        )
        self.secondary.reset_cycles()
        return KeyAcquisition(success=False, pool=SECONDARY_POOL, reason="pool_exhausted")

    def _acquired(self, pool: KeyPool, selected) -> KeyAcquisition:
        index, key = selected
        return KeyAcquisition(success=True, key=key, pool=pool.name, index=index)

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def mark_failed(self, acq: KeyAcquisition, latency_ms: float = 0):
        """Credential rejected (login page): quarantine it in its own pool"""
        pool = self._pool(acq.pool)
        if pool is None or acq.index is None:
            return
        pool.mark_failed(acq.index)
        self.tracker.record_call(acq.key_id, latency_ms, success=False, error_type="AUTH")

    def mark_success(self, acq: KeyAcquisition, latency_ms: float = 0):
        pool = self._pool(acq.pool)
        if pool is None or acq.index is None:
            return
        pool.mark_success()
        self.tracker.record_call(acq.key_id, latency_ms, success=True)

    def record_rate_limit(self, acq: KeyAcquisition):
        if acq.key_id:
            self.tracker.record_rate_limit(acq.key_id)

    def retry_budget(self, traffic_class: TrafficClass = TrafficClass.GENERAL) -> int:
        """Auth retries allowed for one logical request (pool size - 1)"""
        if traffic_class == TrafficClass.SECONDARY and len(self.secondary):
            size = len(self.secondary)
        else:
            size = len(self.general)
        return max(0, size - 1)

    # ------------------------------------------------------------------
    # Degraded mode
    # ------------------------------------------------------------------

    def handle_all_exhausted(self):
        """Enter degraded mode (timestamp recorded once per episode)"""
        if self.global_failure_timestamp is None:
            self.global_failure_timestamp = time.time()
            logger.error("CRITICAL: all API keys have failed across every configured pool")
            logger.error("Entering degraded mode until restart")

    def is_degraded(self) -> bool:
        return self.global_failure_timestamp is not None

    def get_degraded_info(self) -> Dict[str, Any]:
        if not self.is_degraded():
            return {
                "in_failure": False,
                "timestamp": None,
                "message": "",
                "should_show_notification": False,
            }

        return {
            "in_failure": True,
            "timestamp": self.global_failure_timestamp,
            "message": DEGRADED_MESSAGE,
            "should_show_notification": not self.notification_shown,
        }

    def mark_notification_shown(self):
        self.notification_shown = True

    def reset_all(self):
        """Once per process start: clear pool state and degraded mode"""
        logger.info("Resetting API key pools and degraded state")
        self.global_failure_timestamp = None
        self.notification_shown = False
        self.general.reset()
        self.secondary.reset()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        return {
            "pools": {
                GENERAL_POOL: self.general.get_status(),
                SECONDARY_POOL: self.secondary.get_status(),
            },
            "degraded": self.get_degraded_info(),
            "keys": {k: m.to_dict() for k, m in self.tracker.get_all_metrics().items()},
        }

    def get_usage_stats(self) -> Dict[str, Dict[str, int]]:
        """Compact per-pool usage (developer view)"""
        stats = {}
        for pool in (self.general, self.secondary):
            stats[pool.name] = {
                "total_keys": len(pool),
                "current_key": pool.current_index + 1,
                "failed_keys": len(pool.failed),
                "usage_count": pool.usage_count,
            }
        return stats

    def reset_usage_stats(self):
        self.general.reset_usage()
        self.secondary.reset_usage()
        self.tracker.reset()


# ============================================================================
# Singleton Instance
# ============================================================================

_pool_instance = None
_pool_lock = threading.Lock()


def get_pool_manager() -> KeyPoolManager:
    """Get singleton pool manager instance (keys read from environment)"""
    global _pool_instance
    with _pool_lock:
        if _pool_instance is None:
            _pool_instance = KeyPoolManager.from_env()
    return _pool_instance


# ============================================================================
# Module exports
# ============================================================================

__all__ = [
    "KeyPoolManager",
    "KeyAcquisition",
    "DEGRADED_MESSAGE",
    "get_pool_manager",
]
