"""
REQUEST EXECUTOR
================

One logical GET against the RobotEvents API.

Flow per attempt:
    1. RateLimiter.acquire()
    2. KeyPoolManager.get_credential(traffic_class)
    3. GET with "Authorization: Bearer <key>" (no header if no key)
    4. 429         -> sleep Retry-After (default 5s), same key, no retry slot used
       login page  -> mark key failed, retry while retry_count < pool_size - 1
       other !2xx  -> HttpError(status, body)
       HTML body   -> same as login page
       bad JSON    -> ParseError
       JSON        -> mark key success, return payload

Usage:
    executor = RequestExecutor(get_pool_manager())
    teams = await executor.execute("/teams", {"number": ["229V"]})
    await executor.close()
"""

import asyncio
import json
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import aiohttp

from config import ROBOTEVENTS_BASE_URL, RATE_LIMIT_DEFAULT_WAIT, MAX_PAGE_SIZE
from utils.api_guard import (
    AuthExhausted,
    HttpError,
    ParseError,
    _log_api,
    is_html,
    is_login_page,
)
from utils.logger import get_logger

from .key_pool import TrafficClass
from .pool_manager import KeyAcquisition, KeyPoolManager
from .rate_limiter import RateLimiter, get_rate_limiter

logger = get_logger("REQUEST_EXECUTOR")


# ============================================================================
# Configuration
# ============================================================================

LIST_ENDPOINT_MARKERS = (
    "/teams", "/events", "/rankings", "/awards",
    "/skills", "/matches", "/seasons", "/programs",
)

SINGLE_RESOURCE_RE = re.compile(r"/\d+$")


# ============================================================================
# Helpers
# ============================================================================

@dataclass
class DispatchResult:
    """Raw outcome of one HTTP dispatch"""
    status: int
    body: str
    retry_after: Optional[str] = None
    latency_ms: float = 0.0


def is_list_endpoint(endpoint: str) -> bool:
    return any(marker in endpoint for marker in LIST_ENDPOINT_MARKERS)


def is_single_resource(endpoint: str) -> bool:
    return SINGLE_RESOURCE_RE.search(endpoint) is not None


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_query(endpoint: str, params: Optional[Dict[str, Any]] = None) -> List[Tuple[str, str]]:
    """
    Query pairs for an endpoint (caller's dict is never mutated)

    - list endpoints (not /<id>) get per_page=250 unless given
    - lists/tuples become repeated key[]=value
    - None values are dropped
    """
    query = dict(params or {})

    if not query.get("per_page") and is_list_endpoint(endpoint) and not is_single_resource(endpoint):
        query["per_page"] = MAX_PAGE_SIZE

    pairs = []
    for key, value in query.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            for item in value:
                if item is not None:
                    pairs.append((f"{key}[]", _format_value(item)))
        else:
            pairs.append((key, _format_value(value)))
    return pairs


def parse_retry_after(value: Optional[str], default: float = RATE_LIMIT_DEFAULT_WAIT) -> float:
    """Retry-After in seconds; missing or unparseable -> default"""
    if value is None:
        return default
    try:
        seconds = float(str(value).strip())
    except ValueError:
        return default
    if seconds != seconds or seconds < 0:    # NaN or negative
        return default
    return seconds


# ============================================================================
# Request Executor
# ============================================================================

class RequestExecutor:
    """
    Credential-rotating GET executor

    Args:
        pool_manager: KeyPoolManager supplying credentials
        rate_limiter: RateLimiter (defaults to the process-wide get_rate_limiter())
        session: optional aiohttp.ClientSession (created lazily otherwise)
        base_url: API root
    """

    def __init__(
        self,
        pool_manager: KeyPoolManager,
        rate_limiter: Optional[RateLimiter] = None,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: str = ROBOTEVENTS_BASE_URL,
    ):
        self.pool_manager = pool_manager
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self.base_url = base_url.rstrip("/")

        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self):
        """Close HTTP session (only if created here)"""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def _sleep(self, seconds: float):
        await asyncio.sleep(seconds)

    def build_url(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> str:
        pairs = build_query(endpoint, params)
        url = f"{self.base_url}{endpoint}"
        if pairs:
            url = f"{url}?{urlencode(pairs)}"
        return url

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        traffic_class: TrafficClass = TrafficClass.GENERAL,
    ) -> Any:
        """
        Run one logical request and return the parsed JSON payload

        Raises:
            AuthExhausted: every reachable key was rejected
            HttpError: non-auth HTTP failure (status 0 = transport)
            ParseError: body is not JSON and not HTML
        """
        url = self.build_url(endpoint, params)
        retry_count = 0

        while True:
            await self.rate_limiter.acquire()

            acq = self.pool_manager.get_credential(traffic_class)
            headers = {"Content-Type": "application/json"}
            if acq.success and acq.key:
                headers["Authorization"] = f"Bearer {acq.key}"
            else:
                logger.warning(f"No API key for {endpoint} ({acq.reason}), sending without Authorization")

            result = await self._dispatch(url, headers, acq)

            while result.status == 429:
                wait = parse_retry_after(result.retry_after)
                self.pool_manager.record_rate_limit(acq)
                logger.warning(f"Rate limited on {endpoint}, waiting {wait:.1f}s before retry")
                await self._sleep(wait)
                await self.rate_limiter.acquire()
                result = await self._dispatch(url, headers, acq)

            if not 200 <= result.status < 300:
                if is_login_page(result.body):
                    logger.warning(f"Authentication failed on {endpoint} with key #{acq.key_number}")
                    if self._retry_after_auth_failure(acq, traffic_class, retry_count, result.latency_ms):
                        retry_count += 1
                        continue
                    raise AuthExhausted()

                logger.error(f"HTTP {result.status} on {endpoint}: {result.body[:500]}")
                raise HttpError(result.status, result.body)

            try:
                payload = json.loads(result.body)
            except ValueError as e:
                logger.error(f"JSON parse error on {endpoint}: {e} | body: {result.body[:500]}")
                if is_html(result.body):
                    logger.warning(f"Received HTML instead of JSON on {endpoint}, key #{acq.key_number} rejected")
                    if self._retry_after_auth_failure(acq, traffic_class, retry_count, result.latency_ms):
                        retry_count += 1
                        continue
                    raise AuthExhausted(
                        "JSON parse error - received HTML instead of JSON, all API keys failed"
                    ) from e
                raise ParseError(f"JSON parse error: {e}") from e

            self.pool_manager.mark_success(acq, result.latency_ms)
            return payload

    def _retry_after_auth_failure(
        self,
        acq: KeyAcquisition,
        traffic_class: TrafficClass,
        retry_count: int,
        latency_ms: float,
    ) -> bool:
        """Mark the key failed; True if another key may be tried"""
        self.pool_manager.mark_failed(acq, latency_ms)

        if retry_count < self.pool_manager.retry_budget(traffic_class):
            logger.info(f"Retrying with next API key (attempt {retry_count + 1})")
            return True
        return False

    async def _dispatch(self, url: str, headers: Dict[str, str], acq: KeyAcquisition) -> DispatchResult:
        session = await self._get_session()
        start = time.monotonic()

        try:
            async with session.get(url, headers=headers) as resp:
                body = await resp.text()
                status = resp.status
                retry_after = resp.headers.get("Retry-After")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            latency = (time.monotonic() - start) * 1000
            _log_api("GET", url, 0, latency, pool=acq.pool or "", key_number=acq.key_number,
                     error=type(e).__name__)
            logger.error(f"Request failed for {url.split('?')[0]}: {e}")
            raise HttpError(0, str(e)) from e

        latency = (time.monotonic() - start) * 1000
        _log_api("GET", url, status, latency, pool=acq.pool or "", key_number=acq.key_number)

        return DispatchResult(status=status, body=body, retry_after=retry_after, latency_ms=latency)


# ============================================================================
# Module exports
# ============================================================================

__all__ = [
    "RequestExecutor",
    "DispatchResult",
    "build_query",
    "parse_retry_after",
    "is_list_endpoint",
    "is_single_resource",
]
