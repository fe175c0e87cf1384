from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import quote

import httpx
from loguru import logger

from beetleboard.config import Settings, settings
from beetleboard.errors import UpstreamError
from beetleboard.models import SyncMetrics

Sleep = Callable[[float], Awaitable[None]]


class UpstreamClient:
    """JSON client for the Remilia public API with bounded retries.

    A 429 waits ``min(rate_limit_delay * attempt, cap)``; any other failure
    waits ``min(backoff_base * 2**(attempt - 1), cap)``. Both consume one
    attempt of the ``max_retries`` budget.
    """

    def __init__(
        self,
        config: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._config = config or settings
        self._sleep = sleep
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self._config.api_base_url,
            headers={
                "Accept": "application/json",
                "User-Agent": self._config.user_agent,
            },
            timeout=self._config.request_timeout_seconds,
        )

    async def __aenter__(self) -> UpstreamClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _rate_limit_delay(self, attempt: int) -> float:
        cfg = self._config
        return min(cfg.rate_limit_delay_seconds * attempt, cfg.rate_limit_delay_cap_seconds)

    def _backoff_delay(self, attempt: int) -> float:
        cfg = self._config
        return min(cfg.backoff_base_seconds * 2 ** (attempt - 1), cfg.backoff_cap_seconds)

    async def fetch_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        metrics: SyncMetrics | None = None,
    ) -> Any:
        retries = self._config.max_retries
        last_error: UpstreamError | None = None

        for attempt in range(1, retries + 1):
            try:
                response = await self._client.get(path, params=params)
            except httpx.TimeoutException as exc:
                last_error = UpstreamError(None, f"Timed out fetching {path}: {exc!r}")
            except httpx.HTTPError as exc:
                last_error = UpstreamError(None, f"Request to {path} failed: {exc!r}")
            else:
                if response.status_code == 429:
                    last_error = UpstreamError(429, f"Rate limited on {path}")
                    if attempt < retries:
                        delay = self._rate_limit_delay(attempt)
                        logger.warning(
                            "Rate limited, waiting {:.1f}s (attempt {}/{})",
                            delay,
                            attempt,
                            retries,
                        )
                        if metrics is not None:
                            metrics.retry_attempts += 1
                        await self._sleep(delay)
                    continue

                if response.is_success:
                    try:
                        return response.json()
                    except ValueError:
                        last_error = UpstreamError(
                            response.status_code, f"Invalid JSON body from {path}"
                        )
                else:
                    last_error = UpstreamError(
                        response.status_code, response.reason_phrase or "request failed"
                    )

            if attempt < retries:
                delay = self._backoff_delay(attempt)
                logger.warning(
                    "Fetch failed (attempt {}/{}): {}. Retrying in {:.1f}s",
                    attempt,
                    retries,
                    last_error,
                    delay,
                )
                if metrics is not None:
                    metrics.retry_attempts += 1
                await self._sleep(delay)

        if last_error is None:
            raise UpstreamError(None, f"No attempts made for {path}")
        raise last_error

    async def fetch_profile_payload(
        self, username: str, metrics: SyncMetrics | None = None
    ) -> Any:
        return await self.fetch_json(f"/profile/~{quote(username, safe='')}", metrics=metrics)

    async def fetch_friends_page(self, username: str, page: int, limit: int) -> Any:
        return await self.fetch_json(
            "/friends",
            params={"page": page, "limit": limit, "username": username},
        )
