from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from beetleboard.store import (
    META_KEY,
    PARTIAL_KEY,
    PROGRESS_PREFIX,
    SNAPSHOT_KEY,
    STATS_PREFIX,
    USER_LIST_KEY,
    KeyValueStore,
)

FIXED_KEYS = (SNAPSHOT_KEY, META_KEY, USER_LIST_KEY, PARTIAL_KEY)


@dataclass(slots=True)
class FlushReport:
    specific: list[str] = field(default_factory=list)
    stats_keys: int = 0
    progress_keys: int = 0

    @property
    def total(self) -> int:
        return len(self.specific) + self.stats_keys + self.progress_keys


async def flush_caches(store: KeyValueStore) -> FlushReport:
    """Drop every pipeline-owned key so the next sync rebuilds from scratch."""
    report = FlushReport()
    for key in FIXED_KEYS:
        if await store.delete(key):
            report.specific.append(key)

    stats = await store.scan(f"{STATS_PREFIX}*")
    report.stats_keys = await store.delete(*stats)
    progress = await store.scan(f"{PROGRESS_PREFIX}*")
    report.progress_keys = await store.delete(*progress)

    logger.info("Cache flush completed: {} keys deleted", report.total)
    return report


async def cache_status(store: KeyValueStore) -> dict[str, Any]:
    return {
        "keyStatus": {key: await store.exists(key) for key in FIXED_KEYS},
        "statsKeyCount": len(await store.scan(f"{STATS_PREFIX}*")),
        "progressKeyCount": len(await store.scan(f"{PROGRESS_PREFIX}*")),
    }
