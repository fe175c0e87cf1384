from __future__ import annotations

from pathlib import Path
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _split_csv(value: object, field_name: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, int):
        return [str(value)]
    if isinstance(value, str):
        return [p.strip() for p in value.split(",") if p.strip()]
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    raise ValueError(f"BEETLEBOARD_{field_name.upper()} must be comma separated string or list")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="BEETLEBOARD_",
        extra="ignore",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # upstream
    api_base_url: str = "https://remilia.com/api"
    user_agent: str = "beetleboard/1.0"
    request_timeout_seconds: float = 20.0
    max_retries: int = Field(default=3, ge=1)
    rate_limit_delay_seconds: float = 1.5
    rate_limit_delay_cap_seconds: float = 10.0
    backoff_base_seconds: float = 1.0
    backoff_cap_seconds: float = 8.0

    # discovery
    seed_users: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["remilia_jackson", "xultra"]
    )
    friends_page_size: int = Field(default=500, ge=1)
    friends_page_delay_seconds: float = 1.0
    seed_budget_seconds: float = 120.0
    min_expected_users: int = 1000

    # orchestration
    batch_size: int = Field(default=50, ge=1)
    concurrency_limit: int = Field(default=15, ge=1)
    batch_delay_seconds: float = 1.5
    sync_budget_seconds: float = 780.0
    completion_threshold: float = Field(default=0.85, gt=0, le=1)

    # store
    db_path: Path = Path("data/beetleboard.sqlite3")
    snapshot_ttl_seconds: int = 86400
    user_list_ttl_seconds: int = 86400
    progress_ttl_seconds: int = 86400
    stats_ttl_seconds: int = 18000

    # scheduling / bot
    sync_cron_hour: str = "*/4"
    initial_sync_delay_seconds: float = 10.0
    enabled_groups: Annotated[list[str], NoDecode] = Field(default_factory=list)
    log_path: Path | None = Path("data/logs/beetleboard.log")

    @field_validator("seed_users", mode="before")
    @classmethod
    def _parse_seeds(cls, value: object) -> list[str]:
        return _split_csv(value, "seed_users")

    @field_validator("enabled_groups", mode="before")
    @classmethod
    def _parse_groups(cls, value: object) -> list[str]:
        return _split_csv(value, "enabled_groups")

    @property
    def schedule(self) -> str:
        return f"0 {self.sync_cron_hour} * * *"


settings = Settings()
