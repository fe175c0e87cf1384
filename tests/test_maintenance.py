import pytest

from beetleboard.maintenance import cache_status, flush_caches
from beetleboard.store import (
    META_KEY,
    SNAPSHOT_KEY,
    USER_LIST_KEY,
    progress_key,
    stats_key,
)


@pytest.mark.asyncio
async def test_flush_removes_pipeline_keys_only(store) -> None:
    await store.set(SNAPSHOT_KEY, "[]")
    await store.set(META_KEY, "{}")
    await store.set(USER_LIST_KEY, '["a"]')
    for name in ("a", "b", "c"):
        await store.set(stats_key(name), "{}")
    await store.set(progress_key("seed"), "{}")
    await store.set("unrelated", "keep me")

    report = await flush_caches(store)

    assert report.specific == [SNAPSHOT_KEY, META_KEY, USER_LIST_KEY]
    assert report.stats_keys == 3
    assert report.progress_keys == 1
    assert report.total == 7
    assert await store.scan() == ["unrelated"]


@pytest.mark.asyncio
async def test_flush_on_empty_store(store) -> None:
    report = await flush_caches(store)
    assert report.total == 0


@pytest.mark.asyncio
async def test_cache_status(store) -> None:
    await store.set(SNAPSHOT_KEY, "[]")
    await store.set(stats_key("a"), "{}")
    await store.set(stats_key("b"), "{}")

    status = await cache_status(store)

    assert status["keyStatus"][SNAPSHOT_KEY] is True
    assert status["keyStatus"][META_KEY] is False
    assert status["statsKeyCount"] == 2
    assert status["progressKeyCount"] == 0
