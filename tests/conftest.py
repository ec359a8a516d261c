"""
Shared fixtures: fake aiohttp session + executor factory.

File logging is disabled before config is imported.
"""

import json
import os
import time

os.environ["LOG_DIR"] = ""

import pytest
from unittest.mock import AsyncMock


LOGIN_PAGE = "<!DOCTYPE html><html><body><form action='/login'>Please login</form></body></html>"


class FakeResponse:
    def __init__(self, status=200, body="", headers=None):
        self.status = status
        self.body = body
        self.headers = headers or {}

    async def text(self):
        return self.body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """
    Minimal aiohttp.ClientSession stand-in.

    Responses come from `handler(url, headers)` when set, else from the
    queue (FIFO). Queued exceptions are raised from get().
    """

    def __init__(self):
        self.queue = []
        self.handler = None
        self.requests = []
        self.closed = False

    def add(self, status=200, body=None, json_body=None, headers=None):
        if json_body is not None:
            body = json.dumps(json_body)
        self.queue.append(FakeResponse(status, body or "", headers))

    def add_error(self, exc):
        self.queue.append(exc)

    def get(self, url, headers=None):
        self.requests.append({
            "url": url,
            "headers": dict(headers or {}),
            "time": time.monotonic(),
        })
        if self.handler is not None:
            item = self.handler(url, headers or {})
        else:
            item = self.queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def auth_headers(self):
        return [r["headers"].get("Authorization") for r in self.requests]

    async def close(self):
        self.closed = True


@pytest.fixture
def login_page():
    return LOGIN_PAGE


@pytest.fixture
def make_response():
    return FakeResponse


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def make_executor(fake_session):
    from src.api_pool.pool_manager import KeyPoolManager
    from src.api_pool.rate_limiter import RateLimiter
    from src.api_pool.request_executor import RequestExecutor

    def _make(general=None, secondary=None, min_delay=0.0, **pool_options):
        manager = KeyPoolManager(general or [], secondary or [], **pool_options)
        executor = RequestExecutor(
            manager,
            rate_limiter=RateLimiter(min_delay=min_delay),
            session=fake_session,
            base_url="https://api.test/v2",
        )
        executor._sleep = AsyncMock()
        return executor

    return _make
