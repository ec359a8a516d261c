"""
PAGINATION
==========

Walk a paged RobotEvents list endpoint and concatenate every page's "data".

Stops on:
- an empty page
- a short page (fewer items than page_size)
- meta.current_page >= meta.last_page
- max_pages (safety cap, logged as a warning)
"""

from typing import Any, Dict, List, Optional

from config import MAX_PAGE_SIZE, MAX_PAGES
from utils.logger import get_logger

from .key_pool import TrafficClass

logger = get_logger("PAGINATION")


def _is_last_page(payload: Dict[str, Any], items: List[Any], page_size: int) -> bool:
    meta = payload.get("meta") if isinstance(payload, dict) else None
    if isinstance(meta, dict) and meta.get("current_page") is not None and meta.get("last_page") is not None:
        try:
            return int(meta["current_page"]) >= int(meta["last_page"])
        except (TypeError, ValueError):
            pass
    return len(items) < page_size


async def fetch_all_pages(
    executor,
    endpoint: str,
    params: Optional[Dict[str, Any]] = None,
    traffic_class: TrafficClass = TrafficClass.GENERAL,
    page_size: int = MAX_PAGE_SIZE,
    max_pages: int = MAX_PAGES,
) -> List[Any]:
    """
    Fetch pages 1..N of a list endpoint

    Args:
        executor: RequestExecutor
        endpoint: e.g. "/events/51488/divisions/1/rankings"
        params: extra query params (not mutated)
        traffic_class: pool used for every page
        page_size: per_page sent upstream (max 250)
        max_pages: hard stop

    Returns:
        All items, in page order
    """
    page_size = min(page_size, MAX_PAGE_SIZE)
    results: List[Any] = []
    page = 1

    while page <= max_pages:
        page_params = dict(params or {})
        page_params["page"] = page
        page_params["per_page"] = page_size

        payload = await executor.execute(endpoint, page_params, traffic_class)
        items = []
        if isinstance(payload, dict):
            items = payload.get("data") or []

        if not items:
            break

        results.extend(items)
        logger.debug(f"{endpoint}: page {page} -> {len(items)} items (total {len(results)})")

        if _is_last_page(payload, items, page_size):
            break

        page += 1
    else:
        logger.warning(f"{endpoint}: stopped at max_pages={max_pages}, results may be incomplete")

    return results
