from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Callable, Sequence

from loguru import logger
from pydantic import ValidationError

from beetleboard.config import Settings, settings
from beetleboard.discovery import UserDiscovery
from beetleboard.errors import BeetleboardError, EmptySyncError
from beetleboard.fetcher import ProfileFetcher
from beetleboard.models import RankedRecord, StatRecord, SyncMetrics, SyncPass
from beetleboard.publisher import LeaderboardPublisher
from beetleboard.store import PARTIAL_KEY, KeyValueStore
from beetleboard.upstream import Sleep, UpstreamClient


def plan_first_pass(total_users: int, total_passes: int) -> SyncPass:
    if total_passes < 1:
        raise ValueError("total_passes must be >= 1")
    limit = max(1, math.ceil(total_users / total_passes))
    return SyncPass(pass_number=1, total_passes=total_passes, offset=0, limit=limit)


def next_descriptor(current: SyncPass) -> SyncPass | None:
    if current.is_final_pass:
        return None
    return SyncPass(
        pass_number=current.pass_number + 1,
        total_passes=current.total_passes,
        offset=current.offset + current.limit,
        limit=current.limit,
    )


class LeaderboardSyncService:
    def __init__(
        self,
        discovery: UserDiscovery,
        fetcher: ProfileFetcher,
        publisher: LeaderboardPublisher,
        store: KeyValueStore,
        config: Settings | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.discovery = discovery
        self.fetcher = fetcher
        self.publisher = publisher
        self.store = store
        self._config = config or settings
        self._sleep = sleep
        self._clock = clock

    async def _fetch_chunk(self, chunk: Sequence[str], metrics: SyncMetrics) -> list[StatRecord]:
        results = await asyncio.gather(
            *(self.fetcher.fetch_profile(username, metrics) for username in chunk),
            return_exceptions=True,
        )
        records: list[StatRecord] = []
        for username, result in zip(chunk, results):
            if isinstance(result, Exception):
                logger.error("Batch item failed: {} - {!r}", username, result)
            elif isinstance(result, BaseException):
                raise result
            elif result is not None:
                records.append(result)
        return records

    async def fetch_usernames(
        self, usernames: Sequence[str], metrics: SyncMetrics
    ) -> tuple[dict[str, StatRecord], bool]:
        """Fetch stats batch by batch until done or the wall-clock budget runs out.

        Returns the records keyed by username and whether the budget stopped
        the run early.
        """
        cfg = self._config
        total_batches = math.ceil(len(usernames) / cfg.batch_size)
        records: dict[str, StatRecord] = {}

        for batch_index in range(total_batches):
            start = batch_index * cfg.batch_size
            batch = usernames[start : start + cfg.batch_size]
            logger.info(
                "Processing batch {}/{} ({} users)", batch_index + 1, total_batches, len(batch)
            )

            valid = 0
            for i in range(0, len(batch), cfg.concurrency_limit):
                chunk = batch[i : i + cfg.concurrency_limit]
                for record in await self._fetch_chunk(chunk, metrics):
                    records[record.username] = record
                    valid += 1

            logger.info(
                "Batch {}/{}: {}/{} ok | {}% | API: {} | cache: {} | {:.1f}s elapsed",
                batch_index + 1,
                total_batches,
                valid,
                len(batch),
                round((batch_index + 1) / total_batches * 100),
                metrics.successful_fetches,
                metrics.cache_hits,
                self._clock() - metrics.started_at,
            )

            if batch_index == total_batches - 1:
                break
            await self._sleep(cfg.batch_delay_seconds)

            elapsed = self._clock() - metrics.started_at
            if elapsed > cfg.sync_budget_seconds:
                logger.warning(
                    "Approaching timeout at {:.1f}s - stopping with {} users",
                    elapsed,
                    len(records),
                )
                return records, True

        return records, False

    async def run_sync(self) -> list[RankedRecord]:
        metrics = SyncMetrics(started_at=self._clock())
        logger.info("Starting leaderboard sync...")
        try:
            usernames = await self.discovery.discover_all_usernames()
            metrics.total_users = len(usernames)

            records, _ = await self.fetch_usernames(usernames, metrics)
            if not records:
                raise EmptySyncError()

            ranked, metadata = await self.publisher.publish_snapshot(
                list(records.values()), len(usernames), metrics
            )
        except BeetleboardError as exc:
            logger.error(
                "Sync failed after {:.1f}s: {}", self._clock() - metrics.started_at, exc
            )
            logger.error(
                "Progress: {}/{} users fetched from API",
                metrics.successful_fetches,
                metrics.total_users,
            )
            raise

        logger.info(
            "Sync completed in {:.1f}s: {} users | {} failed | {} cache hits",
            self._clock() - metrics.started_at,
            metadata.total_users,
            metrics.failed_fetches,
            metrics.cache_hits,
        )
        return ranked

    async def load_partial(self) -> dict[str, StatRecord]:
        raw = await self.store.get_json(PARTIAL_KEY)
        records: dict[str, StatRecord] = {}
        if not isinstance(raw, list):
            return records
        for item in raw:
            try:
                record = StatRecord.model_validate(item)
            except ValidationError:
                continue
            records[record.username] = record
        return records

    async def run_pass(self, sync_pass: SyncPass) -> SyncPass | None:
        """Run one pass of a multi-invocation sync.

        Non-final passes accumulate records under ``leaderboard-partial`` and
        return the next descriptor; the final pass publishes everything
        accumulated and returns ``None``.
        """
        metrics = SyncMetrics(started_at=self._clock())
        logger.info(
            "Starting sync pass {}/{} (offset {}, limit {})",
            sync_pass.pass_number,
            sync_pass.total_passes,
            sync_pass.offset,
            sync_pass.limit,
        )
        usernames = await self.discovery.discover_all_usernames()
        metrics.total_users = len(usernames)

        if sync_pass.pass_number == 1:
            await self.store.delete(PARTIAL_KEY)
            accumulated: dict[str, StatRecord] = {}
        else:
            accumulated = await self.load_partial()

        if sync_pass.is_final_pass:
            window = usernames[sync_pass.offset :]
        else:
            window = usernames[sync_pass.offset : sync_pass.offset + sync_pass.limit]

        records, _ = await self.fetch_usernames(window, metrics)
        accumulated.update(records)

        if not sync_pass.is_final_pass:
            await self.store.set_json(
                PARTIAL_KEY,
                [r.to_json_dict() for r in accumulated.values()],
                self._config.snapshot_ttl_seconds,
            )
            logger.info(
                "Pass {}/{} done: {} users accumulated",
                sync_pass.pass_number,
                sync_pass.total_passes,
                len(accumulated),
            )
            return next_descriptor(sync_pass)

        if not accumulated:
            raise EmptySyncError()
        await self.publisher.publish_snapshot(list(accumulated.values()), len(usernames), metrics)
        await self.store.delete(PARTIAL_KEY)
        logger.info("Final pass {} published {} users", sync_pass.pass_number, len(accumulated))
        return None


def build_sync_service(
    store: KeyValueStore,
    client: UpstreamClient,
    config: Settings | None = None,
) -> LeaderboardSyncService:
    cfg = config or settings
    return LeaderboardSyncService(
        discovery=UserDiscovery(client, store, cfg),
        fetcher=ProfileFetcher(client, store, cfg),
        publisher=LeaderboardPublisher(store, cfg),
        store=store,
        config=cfg,
    )
