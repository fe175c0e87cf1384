from __future__ import annotations

import json
import time
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

from loguru import logger

from beetleboard.config import Settings, settings
from beetleboard.errors import EmptySyncError, IncompleteSyncError
from beetleboard.models import RankedRecord, StatRecord, SyncMetadata, SyncMetrics, SyncTelemetry
from beetleboard.ranker import rank_records
from beetleboard.store import META_KEY, SNAPSHOT_KEY, KeyValueStore


def _utcnow() -> datetime:
    return datetime.now(UTC)


def build_metadata(
    ranked: Sequence[RankedRecord],
    expected_total: int,
    metrics: SyncMetrics | None,
    last_updated: datetime,
    duration_ms: int,
) -> SyncMetadata:
    telemetry = None
    if metrics is not None:
        telemetry = SyncTelemetry(
            total_users=expected_total,
            successful_fetches=metrics.successful_fetches,
            failed_fetches=metrics.failed_fetches,
            retry_attempts=metrics.retry_attempts,
            cache_hits=metrics.cache_hits,
            total_duration=duration_ms,
            success_rate=round(len(ranked) / expected_total * 100, 2) if expected_total else 0.0,
        )
    return SyncMetadata(
        last_updated=last_updated,
        total_users=len(ranked),
        total_pokes=sum(r.pokes for r in ranked),
        total_social_credit=sum(r.social_credit for r in ranked),
        active_users=sum(1 for r in ranked if r.beetles > 0),
        top_beetles=ranked[0].beetles if ranked else 0,
        sync_metrics=telemetry,
    )


class LeaderboardPublisher:
    """Ranks a fetched population and publishes it, gated on completion rate.

    Ranks only mean something relative to the whole population, so a run that
    fetched less than ``completion_threshold`` of the expected users is
    rejected and the previously published snapshot stays in place.
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._config = config or settings
        self._clock = clock
        self._now = now

    def check_completion(self, fetched: int, expected_total: int) -> float:
        if fetched == 0:
            raise EmptySyncError()
        threshold = self._config.completion_threshold
        rate = fetched / expected_total if expected_total > 0 else 0.0
        if rate < threshold:
            logger.warning(
                "Incomplete sync: {}/{} users ({:.1f}%), not publishing",
                fetched,
                expected_total,
                rate * 100,
            )
            raise IncompleteSyncError(fetched, expected_total, threshold)
        return rate

    async def publish_snapshot(
        self,
        records: Sequence[StatRecord],
        expected_total: int,
        metrics: SyncMetrics | None = None,
    ) -> tuple[list[RankedRecord], SyncMetadata]:
        rate = self.check_completion(len(records), expected_total)
        logger.info(
            "Complete sync: {} of {} users ({:.1f}%)", len(records), expected_total, rate * 100
        )

        ranked = rank_records(records)
        duration_ms = 0
        if metrics is not None:
            duration_ms = int((self._clock() - metrics.started_at) * 1000)
        metadata = build_metadata(ranked, expected_total, metrics, self._now(), duration_ms)

        snapshot = json.dumps([r.to_json_dict() for r in ranked], separators=(",", ":"))
        meta = json.dumps(metadata.to_json_dict(), separators=(",", ":"))
        logger.info(
            "Storing {} users ({:.2f}MB)", len(ranked), len(snapshot) / 1024 / 1024
        )
        await self._store.set_many(
            {SNAPSHOT_KEY: snapshot, META_KEY: meta},
            self._config.snapshot_ttl_seconds,
        )
        return ranked, metadata

    async def publish(
        self,
        records: Sequence[StatRecord],
        expected_total: int,
        metrics: SyncMetrics | None = None,
    ) -> SyncMetadata:
        _, metadata = await self.publish_snapshot(records, expected_total, metrics)
        return metadata
