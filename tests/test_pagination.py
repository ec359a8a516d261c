"""
PAGINATION TESTS

Run: python -m pytest tests/test_pagination.py -v
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest


def _executor(pages):
    executor = MagicMock()
    executor.execute = AsyncMock(side_effect=pages)
    return executor


class TestFetchAllPages:
    def test_stops_on_meta_last_page(self):
        from src.api_pool.pagination import fetch_all_pages
        executor = _executor([
            {"data": [1, 2], "meta": {"current_page": 1, "last_page": 2}},
            {"data": [3], "meta": {"current_page": 2, "last_page": 2}},
        ])

        result = asyncio.run(fetch_all_pages(executor, "/events/1/divisions/1/rankings", page_size=2))

        assert result == [1, 2, 3]
        assert executor.execute.await_count == 2

    def test_meta_wins_over_full_page(self):
        from src.api_pool.pagination import fetch_all_pages
        executor = _executor([
            {"data": [1, 2], "meta": {"current_page": 1, "last_page": 1}},
        ])

        assert asyncio.run(fetch_all_pages(executor, "/teams", page_size=2)) == [1, 2]
        assert executor.execute.await_count == 1

    def test_stops_on_short_page_without_meta(self):
        from src.api_pool.pagination import fetch_all_pages
        executor = _executor([
            {"data": [1, 2, 3]},
            {"data": [4]},
        ])

        result = asyncio.run(fetch_all_pages(executor, "/teams", page_size=3))
        assert result == [1, 2, 3, 4]
        assert executor.execute.await_count == 2

    def test_stops_on_empty_page(self):
        from src.api_pool.pagination import fetch_all_pages
        executor = _executor([
            {"data": [1, 2]},
            {"data": []},
        ])

        assert asyncio.run(fetch_all_pages(executor, "/teams", page_size=2)) == [1, 2]
        assert executor.execute.await_count == 2

    def test_page_cap(self):
        from src.api_pool.pagination import fetch_all_pages
        executor = _executor([{"data": [i, i]} for i in range(10)])

        result = asyncio.run(fetch_all_pages(executor, "/teams", page_size=2, max_pages=3))

        assert executor.execute.await_count == 3
        assert result == [0, 0, 1, 1, 2, 2]

    def test_page_params_and_traffic_class(self):
        from src.api_pool.pagination import fetch_all_pages
        from src.api_pool.key_pool import TrafficClass
        executor = _executor([{"data": [1]}])
        params = {"team": [42]}

        asyncio.run(fetch_all_pages(executor, "/teams", params, TrafficClass.SECONDARY, page_size=250))

        endpoint, sent, traffic_class = executor.execute.await_args.args
        assert endpoint == "/teams"
        assert sent == {"team": [42], "page": 1, "per_page": 250}
        assert traffic_class == TrafficClass.SECONDARY
        assert params == {"team": [42]}

    def test_engine_errors_propagate(self):
        from src.api_pool.pagination import fetch_all_pages
        from utils.api_guard import HttpError
        executor = _executor([HttpError(503, "down")])

        with pytest.raises(HttpError):
            asyncio.run(fetch_all_pages(executor, "/teams"))

    def test_page_size_capped_at_upstream_max(self):
        from src.api_pool.pagination import fetch_all_pages
        from config import MAX_PAGE_SIZE
        executor = _executor([{"data": [1]}])

        asyncio.run(fetch_all_pages(executor, "/teams", page_size=1000))

        _, sent, _ = executor.execute.await_args.args
        assert sent["per_page"] == MAX_PAGE_SIZE
