"""
USAGE TRACKER
=============

Real-time call accounting per API key.

Responsibilities:
- Call counts (sliding window)
- Latency tracking
- Auth failures and rate limits per key
- Summary for status / developer output

Keys are identified as "<pool>#<number>" (e.g. "general#2"), never by
the secret itself.
"""

import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Deque, Dict, List, Optional

from utils.logger import get_logger

logger = get_logger("USAGE_TRACKER")


# ============================================================================
# Configuration
# ============================================================================

WINDOW_MINUTE = 60          # 60 seconds
WINDOW_HOUR = 3600          # 1 hour

MAX_RECORDS_PER_KEY = 10000


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class CallRecord:
    """Record of a single API call"""
    timestamp: float          # Unix timestamp
    latency_ms: float
    success: bool
    error_type: Optional[str] = None


@dataclass
class KeyMetrics:
    """Aggregated metrics for a key"""
    key_id: str

    total_calls: int = 0
    calls_last_minute: int = 0
    calls_last_hour: int = 0

    avg_latency_ms: float = 0.0
    p95_latency_ms: float = 0.0

    errors_last_hour: int = 0
    error_rate: float = 0.0
    consecutive_errors: int = 0

    auth_failures: int = 0
    rate_limits_hit: int = 0

    last_success: Optional[datetime] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "key_id": self.key_id,
            "total_calls": self.total_calls,
            "calls_last_minute": self.calls_last_minute,
            "calls_last_hour": self.calls_last_hour,
            "avg_latency_ms": round(self.avg_latency_ms, 1),
            "p95_latency_ms": round(self.p95_latency_ms, 1),
            "errors_last_hour": self.errors_last_hour,
            "error_rate": round(self.error_rate, 3),
            "consecutive_errors": self.consecutive_errors,
            "auth_failures": self.auth_failures,
            "rate_limits_hit": self.rate_limits_hit,
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "last_error": self.last_error,
        }


def key_label(pool: str, index: int) -> str:
    return f"{pool}#{index + 1}"


# ============================================================================
# Usage Tracker
# ============================================================================

class UsageTracker:
    """
    Tracks API key usage

    Usage:
        tracker = UsageTracker()

        tracker.record_call("general#1", latency_ms=125, success=True)
        tracker.record_call("general#2", latency_ms=80, success=False, error_type="AUTH")
        tracker.record_rate_limit("general#1")

        metrics = tracker.get_metrics("general#1")
    """

    def __init__(self):
        self._calls: Dict[str, Deque[CallRecord]] = {}
        self._totals: Dict[str, int] = {}
        self._consecutive_errors: Dict[str, int] = {}
        self._auth_failures: Dict[str, int] = {}
        self._rate_limits: Dict[str, int] = {}
        self._last_success: Dict[str, datetime] = {}
        self._last_error: Dict[str, str] = {}

        self._lock = Lock()

    def record_call(
        self,
        key_id: str,
        latency_ms: float,
        success: bool,
        error_type: Optional[str] = None
    ):
        """
        Record an API call

        Args:
            key_id: "<pool>#<number>"
            latency_ms: Call latency in milliseconds
            success: Whether call succeeded
            error_type: Error type if failed (e.g. "AUTH")
        """
        with self._lock:
            if key_id not in self._calls:
                self._calls[key_id] = deque(maxlen=MAX_RECORDS_PER_KEY)

            self._calls[key_id].append(CallRecord(
                timestamp=time.time(),
                latency_ms=latency_ms,
                success=success,
                error_type=error_type
            ))
            self._totals[key_id] = self._totals.get(key_id, 0) + 1

            if success:
                self._consecutive_errors[key_id] = 0
                self._last_success[key_id] = datetime.now(timezone.utc)
            else:
                self._consecutive_errors[key_id] = self._consecutive_errors.get(key_id, 0) + 1
                self._last_error[key_id] = error_type or "UNKNOWN"
                if error_type == "AUTH":
                    self._auth_failures[key_id] = self._auth_failures.get(key_id, 0) + 1

    def record_rate_limit(self, key_id: str):
        """429s do not count as failures of the key"""
        with self._lock:
            self._rate_limits[key_id] = self._rate_limits.get(key_id, 0) + 1

    def get_calls_in_window(self, key_id: str, window_seconds: int) -> List[CallRecord]:
        """Get calls within a time window"""
        if key_id not in self._calls:
            return []

        cutoff = time.time() - window_seconds
        return [c for c in self._calls[key_id] if c.timestamp >= cutoff]

    def get_metrics(self, key_id: str) -> KeyMetrics:
        calls_minute = self.get_calls_in_window(key_id, WINDOW_MINUTE)
        calls_hour = self.get_calls_in_window(key_id, WINDOW_HOUR)

        latencies = sorted(c.latency_ms for c in calls_hour if c.success)
        avg_latency = sum(latencies) / len(latencies) if latencies else 0.0
        p95 = latencies[min(int(len(latencies) * 0.95), len(latencies) - 1)] if latencies else 0.0

        errors_hour = sum(1 for c in calls_hour if not c.success)

        return KeyMetrics(
            key_id=key_id,
            total_calls=self._totals.get(key_id, 0),
            calls_last_minute=len(calls_minute),
            calls_last_hour=len(calls_hour),
            avg_latency_ms=avg_latency,
            p95_latency_ms=p95,
            errors_last_hour=errors_hour,
            error_rate=errors_hour / len(calls_hour) if calls_hour else 0.0,
            consecutive_errors=self._consecutive_errors.get(key_id, 0),
            auth_failures=self._auth_failures.get(key_id, 0),
            rate_limits_hit=self._rate_limits.get(key_id, 0),
            last_success=self._last_success.get(key_id),
            last_error=self._last_error.get(key_id),
        )

    def get_all_metrics(self) -> Dict[str, KeyMetrics]:
        """Get metrics for all tracked keys"""
        key_ids = set(self._calls) | set(self._rate_limits)
        return {key_id: self.get_metrics(key_id) for key_id in sorted(key_ids)}

    def reset(self):
        with self._lock:
            self._calls.clear()
            self._totals.clear()
            self._consecutive_errors.clear()
            self._auth_failures.clear()
            self._rate_limits.clear()
            self._last_success.clear()
            self._last_error.clear()
        logger.info("Usage statistics reset")


# ============================================================================
# Module exports
# ============================================================================

__all__ = [
    "UsageTracker",
    "KeyMetrics",
    "CallRecord",
    "key_label",
]
