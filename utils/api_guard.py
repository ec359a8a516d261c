from typing import Optional
from urllib.parse import urlparse

from utils.logger import get_logger

api_log = get_logger("API_MONITOR")   # → data/logs/api_monitor.log


# ============================
# HELPERS
# ============================

def _short_url(url: str) -> str:
    """Return domain+path only, no query params."""
    try:
        p = urlparse(url)
        return f"{p.netloc}{p.path}"
    except ValueError:
        return url[:80]


def _status_tag(status: int, error: str = "") -> str:
    if error:
        return f"ERR={error[:60]}"
    if status == 429:
        return "RATE_LIMIT(429)"
    if status in (401, 403):
        return f"AUTH({status})"
    if status >= 500:
        return f"SERVER_ERR({status})"
    if status >= 400:
        return f"CLIENT_ERR({status})"
    if status == 0:
        return "TIMEOUT/CONN"
    return f"OK({status})"


def _log_api(method: str, url: str, status: int, latency_ms: float,
             pool: str = "", key_number: Optional[int] = None,
             error: str = "", note: str = ""):
    """
    Write one structured line to api_monitor.log.

    Format:
      METHOD | POOL | endpoint | STATUS_TAG | 42ms [| key=#N] [| note]
    """
    parts = [method, pool or "none", _short_url(url), _status_tag(status, error),
             f"{latency_ms:.0f}ms"]
    if key_number is not None:
        parts.append(f"key=#{key_number}")
    if note:
        parts.append(note)

    msg = " | ".join(parts)

    if error or status >= 500 or status == 0:
        api_log.error(msg)
    elif status >= 400:
        api_log.warning(msg)
    else:
        api_log.info(msg)


# ============================
# ERRORS
# ============================

class APIGuardException(Exception):
    """Base class for every terminal request failure"""
    pass


class RateLimited(APIGuardException):
    """HTTP 429. Handled inside the executor, never surfaces to callers."""

    def __init__(self, retry_after: float):
        self.retry_after = retry_after
        super().__init__(f"Rate limited, retry after {retry_after}s")


class AuthExhausted(APIGuardException):
    """Every credential reachable for the request was rejected"""

    def __init__(self, message: str = "API Authentication failed - all API keys may be expired or invalid"):
        super().__init__(message)


class HttpError(APIGuardException):
    """Non-auth HTTP failure (status 0 = transport failure)"""

    def __init__(self, status: int, body: str = ""):
        self.status = status
        self.body = body
        super().__init__(f"HTTP error! status: {status}, body: {body[:200]}")


class ParseError(APIGuardException):
    """Body is neither JSON nor a recognizable login page"""
    pass


# ============================
# RESPONSE CLASSIFIER
# ============================
# Content sniffing only. Swap for a Content-Type check here without
# touching the retry loop.

HTML_MARKER = "<!DOCTYPE html>"
LOGIN_MARKER = "login"


def is_html(body: str) -> bool:
    return HTML_MARKER in (body or "")


def is_login_page(body: str) -> bool:
    """HTML document mentioning login = credential rejected upstream"""
    return is_html(body) and LOGIN_MARKER in body
