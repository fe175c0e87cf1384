from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from datetime import UTC, datetime

from loguru import logger
from pydantic import ValidationError

from beetleboard.config import Settings, settings
from beetleboard.errors import DiscoveryError, UpstreamError
from beetleboard.models import DiscoveryProgress
from beetleboard.parser import parse_friends_page
from beetleboard.store import USER_LIST_KEY, KeyValueStore, progress_key
from beetleboard.upstream import Sleep, UpstreamClient


class UserDiscovery:
    """Resolves the username population by crawling the seed users' friend lists.

    A crawl that runs over its per-seed budget, or hits a page that keeps
    failing, leaves a ``friends-progress:{seed}`` checkpoint and the next
    invocation resumes from that page.
    """

    def __init__(
        self,
        client: UpstreamClient,
        store: KeyValueStore,
        config: Settings | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._store = store
        self._config = config or settings
        self._sleep = sleep
        self._clock = clock

    async def discover_all_usernames(self) -> list[str]:
        cfg = self._config
        cached = await self._store.get_json(USER_LIST_KEY)
        if isinstance(cached, list) and cached:
            logger.info("Using cached user list ({} users)", len(cached))
            return [str(name) for name in cached]

        logger.info("Fetching fresh user list from {} seed users", len(cfg.seed_users))
        found: dict[str, None] = {}
        all_complete = True
        for seed in cfg.seed_users:
            usernames, complete = await self.crawl_seed(seed)
            found.update(dict.fromkeys(usernames))
            all_complete = all_complete and complete

        found.update(dict.fromkeys(cfg.seed_users))
        usernames = list(found)

        if len(usernames) < cfg.min_expected_users:
            logger.error(
                "Discovery found {} users, below the floor of {}; keeping previous user list",
                len(usernames),
                cfg.min_expected_users,
            )
            raise DiscoveryError(len(usernames), cfg.min_expected_users)

        if all_complete:
            await self._store.set_json(USER_LIST_KEY, usernames, cfg.user_list_ttl_seconds)
            logger.info("Found {} unique users, cached user list", len(usernames))
        else:
            logger.warning(
                "Found {} unique users with unfinished seed crawls; user list not cached",
                len(usernames),
            )
        return usernames

    async def crawl_seed(self, seed: str) -> tuple[list[str], bool]:
        """Crawl one seed's friend list. Returns the names seen and whether the crawl finished."""
        cfg = self._config
        limit = cfg.friends_page_size
        progress = await self.load_progress(seed)
        if progress is not None:
            page = progress.next_page
            usernames = dict.fromkeys(progress.usernames)
            logger.info(
                "Resuming friends crawl for {} at page {} ({} names so far)",
                seed,
                page,
                len(usernames),
            )
        else:
            page = 1
            usernames = {}

        started = self._clock()
        while True:
            try:
                payload = await self._client.fetch_friends_page(seed, page, limit)
            except UpstreamError as exc:
                logger.warning("Friends page {} for {} failed: {}", page, seed, exc)
                await self.save_progress(seed, page, list(usernames))
                return list(usernames), False

            parsed = parse_friends_page(payload)
            if parsed is None:
                logger.warning("Invalid friends response for {} page {}", seed, page)
                await self.save_progress(seed, page, list(usernames))
                return list(usernames), False

            names, entry_count = parsed
            usernames.update(dict.fromkeys(names))

            if entry_count < limit:
                await self._store.delete(progress_key(seed))
                logger.info("Found {} friends for {} over {} pages", len(usernames), seed, page)
                return list(usernames), True

            page += 1
            if self._clock() - started > cfg.seed_budget_seconds:
                logger.warning(
                    "Friends crawl for {} over budget, checkpointing at page {}", seed, page
                )
                await self.save_progress(seed, page, list(usernames))
                return list(usernames), False

            await self._sleep(cfg.friends_page_delay_seconds)

    async def load_progress(self, seed: str) -> DiscoveryProgress | None:
        raw = await self._store.get_json(progress_key(seed))
        if raw is None:
            return None
        try:
            return DiscoveryProgress.model_validate(raw)
        except ValidationError:
            logger.warning("Discarding unreadable friends checkpoint for {}", seed)
            return None

    async def save_progress(self, seed: str, next_page: int, usernames: list[str]) -> None:
        progress = DiscoveryProgress(
            seed=seed,
            next_page=next_page,
            usernames=usernames,
            timestamp=datetime.now(UTC),
        )
        await self._store.set_json(
            progress_key(seed), progress.to_json_dict(), self._config.progress_ttl_seconds
        )
