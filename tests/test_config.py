from pathlib import Path

import pytest
from pydantic import ValidationError

from beetleboard.config import Settings


def test_defaults() -> None:
    settings = Settings(_env_file=None)

    assert settings.seed_users == ["remilia_jackson", "xultra"]
    assert settings.enabled_groups == []
    assert settings.completion_threshold == 0.85
    assert settings.db_path == Path("data/beetleboard.sqlite3")
    assert settings.schedule == "0 */4 * * *"


def test_read_lists_from_env_file(tmp_path) -> None:
    env_path = tmp_path / ".env"
    env_path.write_text(
        "BEETLEBOARD_SEED_USERS=alpha, beta ,,gamma\n"
        "BEETLEBOARD_ENABLED_GROUPS=1084141833,747378973\n"
        "BEETLEBOARD_BATCH_SIZE=20\n",
        encoding="utf-8",
    )

    settings = Settings(_env_file=env_path)

    assert settings.seed_users == ["alpha", "beta", "gamma"]
    assert settings.enabled_groups == ["1084141833", "747378973"]
    assert settings.batch_size == 20


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("BEETLEBOARD_ENABLED_GROUPS", "42")
    monkeypatch.setenv("BEETLEBOARD_SYNC_CRON_HOUR", "*/6")

    settings = Settings(_env_file=None)

    assert settings.enabled_groups == ["42"]
    assert settings.schedule == "0 */6 * * *"


def test_single_numeric_group_is_accepted() -> None:
    assert Settings(_env_file=None, enabled_groups=123).enabled_groups == ["123"]


def test_invalid_threshold_is_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, completion_threshold=1.5)
