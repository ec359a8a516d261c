"""
RobotEvents API Pool
====================

Multi-key request engine for the RobotEvents v2 API.

Architecture:
- KeyPool: one ordered key set per traffic class (rotation, quarantine, cycles)
- UsageTracker: per-key call counts and latency
- KeyPoolManager: general / team browser pools, fallback, degraded mode
- RateLimiter: minimum spacing between dispatches
- RequestExecutor: one logical GET with auth retry and 429 handling
- fetch_all_pages: pagination driver

Usage:
    from src.api_pool import get_pool_manager, RequestExecutor, TrafficClass

    pool = get_pool_manager()
    pool.reset_all()                  # once per process start

    executor = RequestExecutor(pool)
    teams = await executor.execute("/teams", {"number": ["229V"]})
    teams = await executor.execute("/teams", {"program": [1]}, TrafficClass.SECONDARY)
    await executor.close()

Traffic classes:
- GENERAL: everything (keys ROBOTEVENTS_API_KEY_1..20)
- SECONDARY: team browser listings (keys ROBOTEVENTS_TEAM_BROWSER_KEY_1..20)
"""

# Key Pool
from .key_pool import (
    KeyPool,
    TrafficClass,
    load_pool_keys,
)

# Usage Tracker
from .usage_tracker import (
    UsageTracker,
    KeyMetrics,
    CallRecord,
)

# Pool Manager
from .pool_manager import (
    KeyPoolManager,
    KeyAcquisition,
    get_pool_manager,
)

# Request Execution
from .rate_limiter import RateLimiter, get_rate_limiter
from .request_executor import RequestExecutor
from .pagination import fetch_all_pages

__all__ = [
    # Key Pool
    "KeyPool",
    "TrafficClass",
    "load_pool_keys",

    # Usage Tracker
    "UsageTracker",
    "KeyMetrics",
    "CallRecord",

    # Pool Manager
    "KeyPoolManager",
    "KeyAcquisition",
    "get_pool_manager",

    # Request Execution
    "RateLimiter",
    "get_rate_limiter",
    "RequestExecutor",
    "fetch_all_pages",
]
