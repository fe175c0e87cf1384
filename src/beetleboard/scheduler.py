from __future__ import annotations

from typing import Any

from loguru import logger

from beetleboard.config import Settings, settings
from beetleboard.errors import BeetleboardError, SyncInProgressError
from beetleboard.models import SyncPass
from beetleboard.service import LeaderboardSyncService, plan_first_pass


class SyncCoordinator:
    """Keeps at most one sync running in this process.

    Scheduled runs yield to manual ones and only log their failures; manual
    runs raise. A multi-pass manual sync holds the manual flag until its final
    pass returns.
    """

    def __init__(self, service: LeaderboardSyncService, config: Settings | None = None) -> None:
        self._service = service
        self._config = config or settings
        self._manual_running = False
        self._scheduled_running = False
        self.scheduler_active = False

    @property
    def is_syncing(self) -> bool:
        return self._manual_running or self._scheduled_running

    async def run_scheduled(self) -> bool:
        if self._manual_running:
            logger.info("Skipping scheduled sync - manual sync in progress")
            return False
        if self._scheduled_running:
            logger.info("Skipping scheduled sync - previous run still in progress")
            return False

        self._scheduled_running = True
        logger.info("Running scheduled leaderboard sync...")
        try:
            await self._service.run_sync()
        except BeetleboardError as exc:
            logger.error("Scheduled sync failed: {}", exc)
            return False
        finally:
            self._scheduled_running = False
        logger.info("Scheduled sync completed successfully")
        return True

    async def run_manual(self, sync_pass: SyncPass | None = None) -> SyncPass | None:
        starting = sync_pass is None or sync_pass.pass_number == 1
        if starting and self.is_syncing:
            raise SyncInProgressError()

        self._manual_running = True
        finished = True
        logger.info("Starting manual sync")
        try:
            if sync_pass is None:
                await self._service.run_sync()
                logger.info("Manual sync completed successfully")
                return None
            next_pass = await self._service.run_pass(sync_pass)
            finished = next_pass is None
            return next_pass
        except BeetleboardError as exc:
            logger.error("Manual sync failed: {}", exc)
            raise
        finally:
            if finished:
                self._manual_running = False

    async def run_passes(self, total_passes: int) -> int:
        """Drive a multi-pass sync to completion in-process. Returns the passes run."""
        if self.is_syncing:
            raise SyncInProgressError()
        usernames = await self._service.discovery.discover_all_usernames()
        current: SyncPass | None = plan_first_pass(len(usernames), total_passes)
        passes = 0
        while current is not None:
            current = await self.run_manual(current)
            passes += 1
        return passes

    def status(self) -> dict[str, Any]:
        return {
            "isRunning": self.scheduler_active,
            "isSyncInProgress": self.is_syncing,
            "isManualSyncRunning": self._manual_running,
            "schedule": self._config.schedule,
            "timezone": "UTC",
        }
