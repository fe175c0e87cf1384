import random
from datetime import UTC, datetime

import pytest

from beetleboard.errors import InvalidQueryError
from beetleboard.models import StatRecord
from beetleboard.query import LeaderboardReader, filter_users
from beetleboard.ranker import rank_records
from beetleboard.store import META_KEY, SNAPSHOT_KEY, stats_key


async def _seed_snapshot(store, count: int = 30) -> list[dict]:
    records = [
        StatRecord(
            username=f"user{i:02d}",
            display_name=f"Beetle Fan {i}",
            beetles=i * 3,
            pokes=(count - i),
            social_credit=i % 5,
        )
        for i in range(count)
    ]
    rows = [r.to_json_dict() for r in rank_records(records)]
    await store.set_json(SNAPSHOT_KEY, rows)
    await store.set_json(
        META_KEY,
        {"lastUpdated": "2026-03-01T12:00:00Z", "totalUsers": count, "totalPokes": 465, "activeUsers": count - 1},
    )
    return rows


@pytest.mark.asyncio
async def test_no_snapshot_returns_none(store, config) -> None:
    reader = LeaderboardReader(store, config)
    assert await reader.get_page() is None
    assert await reader.get_user("anyone") is None
    assert await reader.random_username() is None


@pytest.mark.asyncio
async def test_default_page_sorted_by_beetles(store, config) -> None:
    await _seed_snapshot(store)
    reader = LeaderboardReader(store, config)

    page = await reader.get_page(page=1, limit=10)

    assert page.total == 30
    assert page.pages == 3
    assert page.has_next and not page.has_prev
    assert page.users[0]["username"] == "user29"
    assert [u["rank"] for u in page.users[:3]] == [1, 2, 3]
    assert page.meta["lastUpdated"] == "2026-03-01T12:00:00Z"
    assert page.meta["searchQuery"] is None


@pytest.mark.asyncio
async def test_sort_by_pokes_reports_pokes_rank(store, config) -> None:
    await _seed_snapshot(store)
    reader = LeaderboardReader(store, config)

    page = await reader.get_page(limit=5, sort_by="pokes")

    assert page.users[0]["username"] == "user00"
    assert page.users[0]["rank"] == page.users[0]["pokesRank"] == 1


@pytest.mark.asyncio
async def test_search_and_username_sort(store, config) -> None:
    await _seed_snapshot(store)
    reader = LeaderboardReader(store, config)

    page = await reader.get_page(search="FAN 1", sort_by="username", sort_direction="asc")

    assert [u["username"] for u in page.users] == ["user01"] + [f"user{i}" for i in range(10, 20)]
    assert page.meta["searchQuery"] == "FAN 1"
    assert all("fan 1" in u["displayName"].lower() for u in page.users)


def test_filter_users_matches_username_or_display_name() -> None:
    users = [{"username": "alice", "displayName": "Queen"}, {"username": "bob", "displayName": "Alice fan"}]
    assert filter_users(users, "ALICE") == users
    assert filter_users(users, "queen") == users[:1]
    assert filter_users(users, "  ") == users


@pytest.mark.asyncio
async def test_page_past_end_is_empty(store, config) -> None:
    await _seed_snapshot(store)
    page = await LeaderboardReader(store, config).get_page(page=9, limit=10)
    assert page.users == []
    assert not page.has_next


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs",
    [
        {"page": 0},
        {"limit": 0},
        {"limit": 101},
        {"sort_by": "rank"},
        {"sort_direction": "sideways"},
    ],
)
async def test_invalid_queries_are_rejected(store, config, kwargs) -> None:
    with pytest.raises(InvalidQueryError):
        await LeaderboardReader(store, config).get_page(**kwargs)


@pytest.mark.asyncio
async def test_get_user_is_case_insensitive(store, config) -> None:
    await _seed_snapshot(store)
    user = await LeaderboardReader(store, config).get_user(" USER07 ")
    assert user is not None
    assert user["beetles"] == 21


@pytest.mark.asyncio
async def test_random_username_comes_from_snapshot(store, config) -> None:
    rows = await _seed_snapshot(store)
    reader = LeaderboardReader(store, config)
    names = {row["username"] for row in rows}
    rng = random.Random(7)
    for _ in range(5):
        assert await reader.random_username(rng) in names


@pytest.mark.asyncio
async def test_staleness(store, config) -> None:
    reader = LeaderboardReader(store, config)
    assert await reader.staleness_seconds() is None

    await _seed_snapshot(store)
    now = datetime(2026, 3, 1, 13, 0, tzinfo=UTC)
    assert await reader.staleness_seconds(now) == 3600.0


@pytest.mark.asyncio
async def test_cache_profile_view(store, config) -> None:
    reader = LeaderboardReader(store, config)
    payload = {"user": {"username": "alice", "displayName": "Alice", "beetles": 5}}

    assert await reader.cache_profile_view("alice", payload) is True
    assert (await store.get_json(stats_key("alice")))["beetles"] == 5
    assert await reader.cache_profile_view("bob", {"oops": True}) is False
    assert not await store.exists(stats_key("bob"))
