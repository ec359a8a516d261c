# ============================
# ROBOTEVENTS ENGINE ENTRY POINT
# ============================

# Load environment variables FIRST (before any other imports)
from dotenv import load_dotenv
load_dotenv()

import argparse
import asyncio
import json
import sys

from utils.logger import get_logger
from src.api_pool import get_pool_manager, RequestExecutor
from src.team_cache import TeamResolutionCache
from src.robotevents_client import RobotEventsClient

from config import DEFAULT_PROGRAM

logger = get_logger("MAIN")


# ============================
# BOOT
# ============================

def build_client(program: str = DEFAULT_PROGRAM) -> RobotEventsClient:
    pool = get_pool_manager()
    pool.reset_all()          # degraded mode never survives a restart

    cache = TeamResolutionCache()
    cache.initialize()

    return RobotEventsClient(
        pool_manager=pool,
        executor=RequestExecutor(pool),
        cache=cache,
        program=program,
    )


# ============================
# COMMANDS
# ============================

async def run_command(args) -> int:
    client = build_client(args.program)

    try:
        if args.command == "status":
            result = client.get_api_status()

        elif args.command == "team":
            result = await client.get_team_by_number(args.number)
            if result is None:
                logger.warning(f"Team {args.number} not found")

        elif args.command == "rankings":
            result = await client.get_event_division_rankings(args.event, args.division)

        else:
            logger.error(f"Unknown command: {args.command}")
            return 2

        degraded = client.pool_manager.get_degraded_info()
        if degraded["should_show_notification"]:
            logger.warning(degraded["message"])
            client.pool_manager.mark_notification_shown()

        print(json.dumps(result, indent=2, default=str))
        return 0 if result is not None else 1

    finally:
        await client.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="RobotEvents API engine")
    parser.add_argument("--program", default=DEFAULT_PROGRAM, help=f"Program name (default: {DEFAULT_PROGRAM})")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Key pools, rate limiter and degraded state")

    team = sub.add_parser("team", help="Resolve a team by number (cached 24h)")
    team.add_argument("number")

    rankings = sub.add_parser("rankings", help="All rankings of one event division")
    rankings.add_argument("event", type=int)
    rankings.add_argument("division", type=int)

    args = parser.parse_args(argv)
    return asyncio.run(run_command(args))


# ============================
# ENTRY POINT
# ============================

if __name__ == "__main__":
    sys.exit(main())
