from __future__ import annotations

import argparse
import asyncio
import sys

from loguru import logger

from beetleboard.config import settings
from beetleboard.errors import BeetleboardError
from beetleboard.scheduler import SyncCoordinator
from beetleboard.service import build_sync_service
from beetleboard.store import disconnect_store, get_store, reset_store
from beetleboard.upstream import UpstreamClient


async def _run(passes: int) -> None:
    reset_store()
    store = await get_store(settings)
    try:
        async with UpstreamClient(settings) as client:
            coordinator = SyncCoordinator(build_sync_service(store, client, settings), settings)
            if passes > 1:
                await coordinator.run_passes(passes)
            else:
                await coordinator.run_manual()
    finally:
        await disconnect_store()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="beetleboard", description="Run one leaderboard sync.")
    parser.add_argument("--passes", type=int, default=1, help="split the sync into N chained passes")
    args = parser.parse_args(argv)
    if args.passes < 1:
        parser.error("--passes must be >= 1")

    logger.info("Starting manual leaderboard sync...")
    try:
        asyncio.run(_run(args.passes))
    except BeetleboardError as exc:
        logger.error("Sync failed: {}", exc)
        return 1
    logger.info("Manual sync complete")
    return 0


if __name__ == "__main__":
    sys.exit(main())
