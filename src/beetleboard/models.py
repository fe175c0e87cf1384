from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _StoredModel(BaseModel):
    # Stored JSON is shared with the web frontend, which reads camelCase.
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class StatRecord(_StoredModel):
    username: str
    display_name: str
    pfp_url: str = ""
    beetles: int = Field(default=0, ge=0)
    pokes: int = Field(default=0, ge=0)
    social_credit: int = Field(default=0, ge=0)


class RankedRecord(StatRecord):
    rank: int = Field(ge=1)
    pokes_rank: int = Field(ge=1)
    social_credit_rank: int = Field(ge=1)


class SyncTelemetry(_StoredModel):
    total_users: int
    successful_fetches: int
    failed_fetches: int
    retry_attempts: int
    cache_hits: int
    total_duration: int
    success_rate: float


class SyncMetadata(_StoredModel):
    last_updated: datetime
    total_users: int
    total_pokes: int
    total_social_credit: int
    active_users: int
    top_beetles: int
    sync_metrics: SyncTelemetry | None = None


class DiscoveryProgress(_StoredModel):
    seed: str
    next_page: int = Field(ge=1)
    usernames: list[str] = Field(default_factory=list)
    timestamp: datetime


@dataclass(slots=True)
class SyncMetrics:
    total_users: int = 0
    successful_fetches: int = 0
    failed_fetches: int = 0
    retry_attempts: int = 0
    cache_hits: int = 0
    started_at: float = 0.0


@dataclass(frozen=True, slots=True)
class SyncPass:
    pass_number: int
    total_passes: int
    offset: int
    limit: int

    @property
    def is_final_pass(self) -> bool:
        return self.pass_number >= self.total_passes


@dataclass(slots=True)
class LeaderboardPage:
    users: list[dict[str, Any]]
    page: int
    limit: int
    total: int
    pages: int
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def has_next(self) -> bool:
        return self.page < self.pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1
