from __future__ import annotations

import math
import random
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from beetleboard.config import Settings, settings
from beetleboard.errors import InvalidQueryError
from beetleboard.models import LeaderboardPage
from beetleboard.parser import parse_profile_payload
from beetleboard.store import META_KEY, SNAPSHOT_KEY, KeyValueStore, stats_key

SORT_FIELDS = {"beetles", "pokes", "socialCredit", "username", "user"}
RANK_FIELD_BY_SORT = {"pokes": "pokesRank", "socialCredit": "socialCreditRank"}
MAX_PAGE_LIMIT = 100
RANDOM_TOP_SLICE = 1000
RANDOM_TOP_WEIGHT = 0.7


def filter_users(users: list[dict[str, Any]], search: str) -> list[dict[str, Any]]:
    needle = search.strip().lower()
    if not needle:
        return list(users)
    return [
        u
        for u in users
        if needle in str(u.get("username", "")).lower()
        or needle in str(u.get("displayName", "")).lower()
    ]


def sort_users(users: list[dict[str, Any]], sort_by: str, sort_direction: str) -> list[dict[str, Any]]:
    reverse = sort_direction == "desc"
    if sort_by in {"username", "user"}:
        return sorted(users, key=lambda u: str(u.get("username", "")).lower(), reverse=reverse)
    return sorted(users, key=lambda u: u.get(sort_by) or 0, reverse=reverse)


class LeaderboardReader:
    """Read-only view over the published snapshot, plus the profile-view stat cache."""

    def __init__(self, store: KeyValueStore, config: Settings | None = None) -> None:
        self._store = store
        self._config = config or settings

    async def load_snapshot(self) -> list[dict[str, Any]] | None:
        raw = await self._store.get_json(SNAPSHOT_KEY)
        return raw if isinstance(raw, list) else None

    async def load_meta(self) -> dict[str, Any]:
        raw = await self._store.get_json(META_KEY)
        return raw if isinstance(raw, dict) else {}

    async def get_page(
        self,
        page: int = 1,
        limit: int = 25,
        search: str = "",
        sort_by: str = "beetles",
        sort_direction: str = "desc",
    ) -> LeaderboardPage | None:
        if page < 1 or limit < 1 or limit > MAX_PAGE_LIMIT:
            raise InvalidQueryError("Invalid pagination parameters")
        if sort_by not in SORT_FIELDS:
            raise InvalidQueryError(f"Unknown sort field: {sort_by}")
        if sort_direction not in {"asc", "desc"}:
            raise InvalidQueryError(f"Unknown sort direction: {sort_direction}")

        users = await self.load_snapshot()
        if users is None:
            return None
        meta = await self.load_meta()

        matched = sort_users(filter_users(users, search), sort_by, sort_direction)
        total = len(matched)
        start = (page - 1) * limit
        rank_field = RANK_FIELD_BY_SORT.get(sort_by, "rank")
        rows = [{**u, "rank": u.get(rank_field)} for u in matched[start : start + limit]]

        return LeaderboardPage(
            users=rows,
            page=page,
            limit=limit,
            total=total,
            pages=math.ceil(total / limit),
            meta={
                "lastUpdated": meta.get("lastUpdated"),
                "totalUsers": meta.get("totalUsers") or len(users),
                "totalPokes": meta.get("totalPokes") or 0,
                "activeUsers": meta.get("activeUsers") or 0,
                "searchQuery": search or None,
            },
        )

    async def get_user(self, username: str) -> dict[str, Any] | None:
        users = await self.load_snapshot()
        if not users:
            return None
        wanted = username.strip().lower()
        for user in users:
            if str(user.get("username", "")).lower() == wanted:
                return user
        return None

    async def random_username(self, rng: random.Random | None = None) -> str | None:
        users = await self.load_snapshot()
        if not users:
            return None
        rng = rng or random.Random()
        # Bias towards the top of the board while still surfacing deep cuts.
        pool = users[:RANDOM_TOP_SLICE] if rng.random() < RANDOM_TOP_WEIGHT else users
        return str(rng.choice(pool)["username"])

    async def staleness_seconds(self, now: datetime | None = None) -> float | None:
        meta = await self.load_meta()
        stamp = meta.get("lastUpdated")
        if not stamp:
            return None
        updated = datetime.fromisoformat(str(stamp).replace("Z", "+00:00"))
        if updated.tzinfo is None:
            updated = updated.replace(tzinfo=UTC)
        return ((now or datetime.now(UTC)) - updated).total_seconds()

    async def cache_profile_view(self, username: str, payload: Any) -> bool:
        """Refresh the per-user stat cache from a live profile payload. Best-effort."""
        record = parse_profile_payload(payload, username)
        if record is None:
            logger.debug("Profile view for {} had no usable stats", username)
            return False
        await self._store.set_json(
            stats_key(username), record.to_json_dict(), self._config.stats_ttl_seconds
        )
        return True
