"""
REQUEST EXECUTOR TESTS
======================

URL building, auth retry, 429 handling, error mapping.

Run: python -m pytest tests/test_request_executor.py -v
"""

import asyncio
from urllib.parse import parse_qsl, urlsplit

import aiohttp
import pytest


def _query(url):
    return parse_qsl(urlsplit(url).query)


class TestUrlBuilding:
    def test_list_endpoint_gets_default_page_size(self, make_executor):
        executor = make_executor()
        url = executor.build_url("/teams", {"number": ["229V"]})

        assert urlsplit(url).path == "/v2/teams"
        assert ("per_page", "250") in _query(url)
        assert ("number[]", "229V") in _query(url)

    def test_rankings_endpoint_gets_default_page_size(self, make_executor):
        executor = make_executor()
        url = executor.build_url("/events/1/divisions/1/rankings")
        assert _query(url) == [("per_page", "250")]

    def test_single_resource_has_no_page_size(self, make_executor):
        executor = make_executor()
        url = executor.build_url("/teams/12345")
        assert _query(url) == []

    def test_explicit_page_size_kept(self, make_executor):
        executor = make_executor()
        url = executor.build_url("/events", {"per_page": 50})
        assert _query(url) == [("per_page", "50")]

    def test_non_list_endpoint_untouched(self, make_executor):
        executor = make_executor()
        assert executor.build_url("/status") == "https://api.test/v2/status"

    def test_arrays_bools_and_none(self, make_executor):
        executor = make_executor()
        url = executor.build_url("/teams", {
            "program": [1, 41],
            "registered": True,
            "myTeams": False,
            "grade": None,
        })
        query = _query(url)

        assert ("program[]", "1") in query
        assert ("program[]", "41") in query
        assert ("registered", "true") in query
        assert ("myTeams", "false") in query
        assert all(key != "grade" for key, _ in query)

    def test_caller_params_not_mutated(self, make_executor):
        executor = make_executor()
        params = {"number": ["229V"]}
        executor.build_url("/teams", params)
        assert params == {"number": ["229V"]}


class TestRetryAfterParsing:
    def test_values(self):
        from src.api_pool.request_executor import parse_retry_after
        assert parse_retry_after("2") == 2.0
        assert parse_retry_after(None) == 5.0
        assert parse_retry_after("abc") == 5.0
        assert parse_retry_after("-3") == 5.0


class TestExecute:
    def test_success_attaches_bearer_and_marks_success(self, make_executor, fake_session):
        executor = make_executor(general=["A", "B"])
        fake_session.add(200, json_body={"data": [{"id": 1}]})

        result = asyncio.run(executor.execute("/teams"))

        assert result == {"data": [{"id": 1}]}
        assert fake_session.auth_headers() == ["Bearer A"]
        assert executor.pool_manager.general.successful_calls_in_cycle == 1

    def test_no_credentials_sends_without_auth(self, make_executor, fake_session):
        executor = make_executor()
        fake_session.add(200, json_body={"ok": True})

        assert asyncio.run(executor.execute("/teams/1")) == {"ok": True}
        assert "Authorization" not in fake_session.requests[0]["headers"]

    def test_missing_key_reason_is_logged(self, make_executor, fake_session):
        from unittest.mock import patch
        executor = make_executor()
        fake_session.add(200, json_body={"ok": True})

        with patch("src.api_pool.request_executor.logger") as mock_logger:
            asyncio.run(executor.execute("/teams/1"))

        messages = [c.args[0] for c in mock_logger.warning.call_args_list]
        assert any("no_keys" in m for m in messages)

    def test_secondary_traffic_uses_team_browser_key(self, make_executor, fake_session):
        from src.api_pool.key_pool import TrafficClass
        executor = make_executor(general=["A"], secondary=["T"])
        fake_session.add(200, json_body={"data": []})

        asyncio.run(executor.execute("/teams", traffic_class=TrafficClass.SECONDARY))
        assert fake_session.auth_headers() == ["Bearer T"]


class TestRateLimited:
    def test_429_waits_and_reuses_same_key(self, make_executor, fake_session):
        executor = make_executor(general=["A", "B"], calls_before_rotation=1)
        fake_session.add(429, "slow down", headers={"Retry-After": "2"})
        fake_session.add(200, json_body={"data": []})

        result = asyncio.run(executor.execute("/teams"))

        assert result == {"data": []}
        executor._sleep.assert_awaited_once_with(2.0)
        assert fake_session.auth_headers() == ["Bearer A", "Bearer A"]
        assert executor.pool_manager.general.failed == set()

    def test_429_without_header_waits_default(self, make_executor, fake_session):
        executor = make_executor(general=["A"])
        fake_session.add(429, "")
        fake_session.add(429, "", headers={"Retry-After": "soon"})
        fake_session.add(200, json_body={})

        asyncio.run(executor.execute("/teams"))

        waits = [c.args[0] for c in executor._sleep.await_args_list]
        assert waits == [5.0, 5.0]

    def test_429_does_not_consume_retry_slot(self, make_executor, fake_session, login_page):
        # pool of one: a single auth failure is terminal, 429s are not
        from utils.api_guard import AuthExhausted
        executor = make_executor(general=["A"])
        fake_session.add(429, "", headers={"Retry-After": "1"})
        fake_session.add(429, "", headers={"Retry-After": "1"})
        fake_session.add(200, json_body={"data": [1]})

        assert asyncio.run(executor.execute("/teams")) == {"data": [1]}

        fake_session.add(401, login_page)
        with pytest.raises(AuthExhausted):
            asyncio.run(executor.execute("/teams"))


class TestAuthFailures:
    def test_login_page_rotates_to_next_key(self, make_executor, fake_session, login_page):
        executor = make_executor(general=["A", "B", "C"])
        fake_session.add(401, login_page)
        fake_session.add(200, json_body={"data": ["ok"]})

        result = asyncio.run(executor.execute("/teams"))

        assert result == {"data": ["ok"]}
        assert fake_session.auth_headers() == ["Bearer A", "Bearer B"]
        assert executor.pool_manager.general.failed == {0}

    def test_all_keys_rejected_raises_auth_exhausted(self, make_executor, fake_session, login_page):
        from utils.api_guard import AuthExhausted
        executor = make_executor(general=["A", "B", "C"])
        for _ in range(3):
            fake_session.add(403, login_page)

        with pytest.raises(AuthExhausted):
            asyncio.run(executor.execute("/teams"))

        # pool_size dispatches: first try + (pool_size - 1) retries
        assert fake_session.auth_headers() == ["Bearer A", "Bearer B", "Bearer C"]

    def test_single_key_pool_no_retry(self, make_executor, fake_session, login_page):
        from utils.api_guard import AuthExhausted
        executor = make_executor(general=["A"])
        fake_session.add(401, login_page)

        with pytest.raises(AuthExhausted):
            asyncio.run(executor.execute("/teams"))
        assert len(fake_session.requests) == 1

    def test_html_body_on_200_treated_as_auth_failure(self, make_executor, fake_session):
        executor = make_executor(general=["A", "B"])
        fake_session.add(200, "<!DOCTYPE html><html>maintenance</html>")
        fake_session.add(200, json_body={"data": []})

        assert asyncio.run(executor.execute("/teams")) == {"data": []}
        assert fake_session.auth_headers() == ["Bearer A", "Bearer B"]
        assert executor.pool_manager.general.failed == {0}

    def test_html_body_on_200_exhausts_single_key(self, make_executor, fake_session):
        from utils.api_guard import AuthExhausted
        executor = make_executor(general=["A"])
        fake_session.add(200, "<!DOCTYPE html><html>maintenance</html>")

        with pytest.raises(AuthExhausted):
            asyncio.run(executor.execute("/teams"))


class TestOtherErrors:
    def test_server_error_raises_http_error(self, make_executor, fake_session):
        from utils.api_guard import HttpError
        executor = make_executor(general=["A", "B"])
        fake_session.add(500, "boom")

        with pytest.raises(HttpError) as exc_info:
            asyncio.run(executor.execute("/teams"))

        assert exc_info.value.status == 500
        assert exc_info.value.body == "boom"
        assert len(fake_session.requests) == 1
        assert executor.pool_manager.general.failed == set()

    def test_html_error_without_login_is_http_error(self, make_executor, fake_session):
        from utils.api_guard import HttpError
        executor = make_executor(general=["A", "B"])
        fake_session.add(404, "<!DOCTYPE html><html>Not found</html>")

        with pytest.raises(HttpError) as exc_info:
            asyncio.run(executor.execute("/teams/999"))
        assert exc_info.value.status == 404

    def test_garbage_body_raises_parse_error(self, make_executor, fake_session):
        from utils.api_guard import ParseError
        executor = make_executor(general=["A"])
        fake_session.add(200, "not json at all")

        with pytest.raises(ParseError):
            asyncio.run(executor.execute("/teams"))

    def test_transport_failure_is_status_zero(self, make_executor, fake_session):
        from utils.api_guard import HttpError
        executor = make_executor(general=["A"])
        fake_session.add_error(aiohttp.ClientConnectionError("connection refused"))

        with pytest.raises(HttpError) as exc_info:
            asyncio.run(executor.execute("/teams"))
        assert exc_info.value.status == 0

    def test_all_errors_share_base_class(self):
        from utils.api_guard import APIGuardException, AuthExhausted, HttpError, ParseError, RateLimited
        for exc in (AuthExhausted(), HttpError(500), ParseError("x"), RateLimited(5)):
            assert isinstance(exc, APIGuardException)


class TestPacing:
    def test_dispatches_are_spaced(self, make_executor, fake_session):
        executor = make_executor(general=["A"], min_delay=0.05)
        for _ in range(3):
            fake_session.add(200, json_body={})

        async def run():
            for _ in range(3):
                await executor.execute("/teams/1")

        asyncio.run(run())

        times = [r["time"] for r in fake_session.requests]
        gaps = [b - a for a, b in zip(times, times[1:])]
        assert all(gap >= 0.045 for gap in gaps)


class TestSharedRateLimiter:
    def test_executors_share_process_limiter(self, fake_session, monkeypatch):
        from src.api_pool import rate_limiter
        from src.api_pool.pool_manager import KeyPoolManager
        from src.api_pool.request_executor import RequestExecutor
        monkeypatch.setattr(rate_limiter, "_limiter_instance", None)

        manager = KeyPoolManager(["A"])
        first = RequestExecutor(manager, session=fake_session, base_url="https://api.test/v2")
        second = RequestExecutor(manager, session=fake_session, base_url="https://api.test/v2")
        assert first.rate_limiter is second.rate_limiter
        assert first.rate_limiter is rate_limiter.get_rate_limiter()

        first.rate_limiter.min_delay = 0.05
        fake_session.add(200, json_body={})
        fake_session.add(200, json_body={})

        async def run():
            await first.execute("/teams/1")
            await second.execute("/teams/2")

        asyncio.run(run())

        times = [r["time"] for r in fake_session.requests]
        assert times[1] - times[0] >= 0.045

    def test_injected_limiter_wins(self):
        from src.api_pool.pool_manager import KeyPoolManager
        from src.api_pool.rate_limiter import RateLimiter, get_rate_limiter
        from src.api_pool.request_executor import RequestExecutor
        limiter = RateLimiter(min_delay=0)

        executor = RequestExecutor(KeyPoolManager(), rate_limiter=limiter)
        assert executor.rate_limiter is limiter
        assert executor.rate_limiter is not get_rate_limiter()


class TestSession:
    def test_injected_session_not_closed(self, make_executor, fake_session):
        executor = make_executor()
        asyncio.run(executor.close())
        assert fake_session.closed is False

    def test_lazy_session_created_and_closed(self):
        from src.api_pool.pool_manager import KeyPoolManager
        from src.api_pool.request_executor import RequestExecutor

        async def run():
            executor = RequestExecutor(KeyPoolManager())
            session = await executor._get_session()
            assert isinstance(session, aiohttp.ClientSession)
            assert await executor._get_session() is session
            await executor.close()
            return session

        session = asyncio.run(run())
        assert session.closed
