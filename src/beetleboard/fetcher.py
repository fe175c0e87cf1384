from __future__ import annotations

import sqlite3

from loguru import logger
from pydantic import ValidationError

from beetleboard.config import Settings, settings
from beetleboard.errors import UpstreamError
from beetleboard.models import StatRecord, SyncMetrics
from beetleboard.parser import parse_profile_payload
from beetleboard.store import KeyValueStore, stats_key
from beetleboard.upstream import UpstreamClient


class ProfileFetcher:
    def __init__(
        self,
        client: UpstreamClient,
        store: KeyValueStore,
        config: Settings | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self._config = config or settings

    async def cached_profile(self, username: str) -> StatRecord | None:
        try:
            raw = await self._store.get_json(stats_key(username))
        except sqlite3.Error as exc:
            logger.warning("Stats cache read failed for {}: {}", username, exc)
            return None
        if raw is None:
            return None
        try:
            return StatRecord.model_validate(raw)
        except ValidationError:
            logger.warning("Ignoring unreadable cached stats for {}", username)
            return None

    async def fetch_profile(self, username: str, metrics: SyncMetrics) -> StatRecord | None:
        cached = await self.cached_profile(username)
        if cached is not None:
            metrics.cache_hits += 1
            return cached

        try:
            payload = await self._client.fetch_profile_payload(username, metrics=metrics)
        except UpstreamError as exc:
            metrics.failed_fetches += 1
            logger.warning("Failed to fetch profile for {}: {}", username, exc)
            return None

        record = parse_profile_payload(payload, username)
        if record is None:
            metrics.failed_fetches += 1
            logger.warning("Invalid profile structure for {}", username)
            return None

        metrics.successful_fetches += 1
        # Raw stats only: ranks are recomputed from scratch on every sync.
        try:
            await self._store.set_json(
                stats_key(username), record.to_json_dict(), self._config.stats_ttl_seconds
            )
        except sqlite3.Error as exc:
            logger.warning("Stats cache write failed for {}: {}", username, exc)
        return record
