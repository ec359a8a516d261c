"""
ROBOTEVENTS CLIENT
==================

Thin consumers of the request engine.

Every method returns raw JSON (dicts / lists). Terminal engine errors
(AuthExhausted, HttpError, ParseError) are logged and turned into an
empty/default result: callers never see an exception.

Methods:
- get_teams(filters)                          GET /teams
- get_teams_for_browser(filters)              GET /teams (team browser pool)
- get_team_by_id(team_id)                     GET /teams/{id}
- get_team_by_number(number, program)         cache -> GET /teams
- get_event_division_rankings(event, div)     all pages of /events/{id}/divisions/{div}/rankings
- get_api_status()                            pools, limiter, degraded state
"""

from typing import Any, Dict, Optional

from config import DEFAULT_PROGRAM, PROGRAM_IDS
from utils.api_guard import APIGuardException, AuthExhausted
from utils.logger import get_logger

from src.api_pool import (
    KeyPoolManager,
    RequestExecutor,
    TrafficClass,
    fetch_all_pages,
    get_pool_manager,
)
from src.team_cache import TeamResolutionCache

logger = get_logger("ROBOTEVENTS_CLIENT")


# ============================
# CONFIG
# ============================

# Filters forwarded to /teams only when truthy
TEAM_FILTERS = ("id", "number", "event", "program", "grade", "country", "page", "per_page")

# Filters forwarded whenever they are set (False is meaningful)
TEAM_BOOL_FILTERS = ("registered", "myTeams")

RANKING_FILTERS = ("team", "rank")


def get_program_id(program: str) -> int:
    """Unknown program names resolve to V5RC (1)"""
    return PROGRAM_IDS.get(program, 1)


def _empty_list_response() -> Dict[str, Any]:
    return {"data": [], "meta": {}}


def _team_params(filters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    filters = filters or {}
    params = {k: filters[k] for k in TEAM_FILTERS if filters.get(k)}
    params.update({k: filters[k] for k in TEAM_BOOL_FILTERS if filters.get(k) is not None})
    return params


# ============================
# CLIENT
# ============================

class RobotEventsClient:
    """
    Usage:
        client = RobotEventsClient()
        team = await client.get_team_by_number("229V")
        rankings = await client.get_event_division_rankings(51488, 1)
        await client.close()
    """

    def __init__(
        self,
        pool_manager: Optional[KeyPoolManager] = None,
        executor: Optional[RequestExecutor] = None,
        cache: Optional[TeamResolutionCache] = None,
        program: str = DEFAULT_PROGRAM,
    ):
        self.pool_manager = pool_manager or get_pool_manager()
        self.executor = executor or RequestExecutor(self.pool_manager)
        self.cache = cache if cache is not None else TeamResolutionCache()
        self.program = program

    async def close(self):
        await self.cache.flush()
        await self.executor.close()

    # ============================
    # TEAMS
    # ============================

    async def get_teams(self, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            return await self.executor.execute("/teams", _team_params(filters))
        except APIGuardException as e:
            logger.warning(f"Failed to get teams: {e}")
            return _empty_list_response()

    async def get_teams_for_browser(self, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Bulk team listing on the team browser key pool"""
        try:
            return await self.executor.execute("/teams", _team_params(filters), TrafficClass.SECONDARY)
        except APIGuardException as e:
            logger.warning(f"[Team Browser] Failed to get teams: {e}")
            return _empty_list_response()

    async def get_team_by_id(self, team_id: int) -> Optional[Dict[str, Any]]:
        try:
            return await self.executor.execute(f"/teams/{team_id}")
        except APIGuardException as e:
            logger.warning(f"Failed to get team {team_id}: {e}")
            return None

    async def get_team_by_number(self, team_number: str, program: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Resolve a team number inside one program.

        Cached for 24h per (number, program). An exact number match wins,
        otherwise the first team returned is used.
        """
        program = program or self.program
        program_id = get_program_id(program)

        cached = self.cache.get(team_number, program)
        if cached is not None:
            return cached.data

        filters = {"number": [team_number], "program": [program_id], "per_page": 250}
        try:
            response = await self.executor.execute("/teams", _team_params(filters))
        except AuthExhausted as e:
            logger.error(f"Authentication failed while looking up team {team_number}: {e}")
            return None
        except APIGuardException as e:
            logger.warning(f"Failed to get team by number {team_number}: {e}")
            return None

        teams = (response or {}).get("data") or []
        if not teams:
            logger.info(f"No team found for number {team_number} in {program}")
            return None

        team = next((t for t in teams if t.get("number") == team_number), teams[0])
        self.cache.put(team_number, program, team.get("id"), team)
        return team

    # ============================
    # RANKINGS
    # ============================

    async def get_event_division_rankings(
        self,
        event_id: int,
        division_id: int,
        filters: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """All ranking pages of one division, flattened into a single page"""
        filters = filters or {}
        params = {k: filters[k] for k in RANKING_FILTERS if filters.get(k)}

        try:
            rankings = await fetch_all_pages(
                self.executor,
                f"/events/{event_id}/divisions/{division_id}/rankings",
                params,
            )
        except APIGuardException as e:
            logger.warning(f"Failed to get rankings for event {event_id}, division {division_id}: {e}")
            return _empty_list_response()

        logger.debug(f"Total rankings fetched: {len(rankings)}")
        return {
            "data": rankings,
            "meta": {
                "current_page": 1,
                "last_page": 1,
                "per_page": len(rankings),
                "total": len(rankings),
            },
        }

    # ============================
    # STATUS
    # ============================

    def get_api_status(self) -> Dict[str, Any]:
        status = self.pool_manager.get_status()
        status["rate_limiter"] = self.executor.rate_limiter.get_status()
        status["team_cache_size"] = len(self.cache)
        return status
