from __future__ import annotations

from typing import Any
from urllib.parse import unquote

import httpx
import pytest
import pytest_asyncio

from beetleboard.config import Settings
from beetleboard.store import KeyValueStore
from beetleboard.upstream import UpstreamClient


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRemilia:
    """In-process stand-in for the Remilia profile and friends endpoints."""

    def __init__(self) -> None:
        self.profiles: dict[str, Any] = {}
        self.friends: dict[str, list[str]] = {}
        self.failing_friend_pages: set[tuple[str, int]] = set()
        self.requests: list[httpx.Request] = []

    def add_profile(self, username: str, beetles: int = 0, pokes: int = 0, credit: int = 0) -> None:
        self.profiles[username] = {
            "user": {
                "username": username,
                "displayName": username.title(),
                "pfpUrl": f"https://cdn.example/{username}.png",
                "beetles": beetles,
                "pokes": pokes,
                "socialCredit": {"score": credit},
            }
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.startswith("/api/profile/~"):
            payload = self.profiles.get(unquote(path.removeprefix("/api/profile/~")))
            if payload is None:
                return httpx.Response(404, json={"error": "not found"})
            if isinstance(payload, int):
                return httpx.Response(payload)
            return httpx.Response(200, json=payload)
        if path == "/api/friends":
            seed = request.url.params["username"]
            page = int(request.url.params["page"])
            limit = int(request.url.params["limit"])
            if (seed, page) in self.failing_friend_pages:
                return httpx.Response(500)
            names = self.friends.get(seed, [])[(page - 1) * limit : page * limit]
            return httpx.Response(
                200, json={"friends": [{"displayUsername": n, "id": i} for i, n in enumerate(names)]}
            )
        return httpx.Response(404)

    def friend_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == "/api/friends"]

    def profile_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.startswith("/api/profile/")]

    def upstream(self, config: Settings, sleep=None) -> UpstreamClient:
        http = httpx.AsyncClient(
            transport=httpx.MockTransport(self.handler),
            base_url=config.api_base_url,
        )
        return UpstreamClient(config, client=http, sleep=sleep or RecordingSleep())


@pytest.fixture
def config(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        db_path=tmp_path / "beetleboard.sqlite3",
        seed_users=["a", "b"],
        min_expected_users=1,
        friends_page_size=100,
        friends_page_delay_seconds=0,
        batch_delay_seconds=0,
        rate_limit_delay_seconds=1.5,
        backoff_base_seconds=1.0,
    )


@pytest_asyncio.fixture
async def store(config: Settings) -> KeyValueStore:
    kv = KeyValueStore(config.db_path)
    await kv.init()
    return kv


@pytest.fixture
def fake_api() -> FakeRemilia:
    return FakeRemilia()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()
