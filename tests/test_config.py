from __future__ import annotations

from pathlib import Path
import textwrap

import pytest
from pydantic import ValidationError

from storyweave.config.loader import load_config
from storyweave.config.schema import (
    DEFAULT_PENALTIES,
    AppConfig,
    AppConfigRoot,
    AuditConfig,
    MemoryBankConfig,
    SelectorConfig,
    resolve_paths,
)

_ENV_VARS = ("STORYWEAVE_DATA_DIR", "STORYWEAVE_LOG_LEVEL", "STORYWEAVE_SNAPSHOT_PATH")


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


def test_defaults_match_documented_values() -> None:
    config = AppConfigRoot()

    assert config.memory.max_size_bytes == 1_048_576
    assert config.memory.cleanup_max_age_hours == 24
    assert config.memory.keep_active is True
    assert config.audit.window_size == 10
    assert config.audit.revision_threshold == 60
    assert config.audit.penalties == DEFAULT_PENALTIES
    assert config.selector.ready_limit == 5
    assert config.checker.history_limit == 10


def test_resolve_paths_makes_absolute(tmp_path: Path) -> None:
    config = AppConfigRoot()
    config.app.data_dir = Path("data")
    config.storage.snapshot_path = Path("data/story.json")

    resolved = resolve_paths(config, tmp_path)

    assert resolved.app.data_dir == (tmp_path / "data").resolve()
    assert resolved.storage.snapshot_path == (tmp_path / "data/story.json").resolve()


def test_log_level_is_normalized_and_validated() -> None:
    assert AppConfig(log_level=" debug ").log_level == "DEBUG"
    with pytest.raises(ValidationError):
        AppConfig(log_level="verbose")


def test_audit_config_validates_ranges() -> None:
    with pytest.raises(ValidationError):
        AuditConfig(window_size=0)
    with pytest.raises(ValidationError):
        AuditConfig(window_size=51)
    with pytest.raises(ValidationError):
        AuditConfig(revision_threshold=101)


def test_audit_penalties_merge_with_defaults() -> None:
    config = AuditConfig(penalties={"location": 20})

    assert config.penalties["location"] == 20
    assert config.penalties["character"] == 10

    with pytest.raises(ValidationError):
        AuditConfig(penalties={"inventory": 5})
    with pytest.raises(ValidationError):
        AuditConfig(penalties={"plot": -1})


def test_memory_and_selector_limits_validated() -> None:
    with pytest.raises(ValidationError):
        MemoryBankConfig(max_size_bytes=0)
    with pytest.raises(ValidationError):
        MemoryBankConfig(cleanup_max_age_hours=-1)
    with pytest.raises(ValidationError):
        SelectorConfig(description_chars=0)
    with pytest.raises(ValidationError):
        AppConfigRoot.model_validate({"memory": {"max_size_bytes": 100, "cleanup_max_total_bytes": 50}})


def test_config_rejects_unknown_keys() -> None:
    with pytest.raises(ValidationError):
        AppConfigRoot.model_validate({"audit": {"window": 5}})


def test_load_config_merges_default_profile_and_overrides(clean_env: Path) -> None:
    configs = clean_env / "configs"
    (configs / "profiles").mkdir(parents=True)
    (configs / "default.yaml").write_text(
        textwrap.dedent(
            """
            audit:
              window_size: 20
            memory:
              compress: true
            """
        ),
        encoding="utf-8",
    )
    (configs / "profiles" / "strict.yaml").write_text(
        textwrap.dedent(
            """
            checker:
              strict_mode: true
            audit:
              revision_threshold: 75
            """
        ),
        encoding="utf-8",
    )

    config = load_config(profile="strict", overrides={"selector": {"ready_limit": 3}})

    assert config.audit.window_size == 20
    assert config.audit.revision_threshold == 75
    assert config.memory.compress is True
    assert config.checker.strict_mode is True
    assert config.selector.ready_limit == 3
    assert config.storage.snapshot_path == (clean_env / "data/story.json").resolve()


def test_load_config_custom_file_and_env(clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    custom = clean_env / "custom.yaml"
    custom.write_text("app:\n  log_level: warning\n", encoding="utf-8")
    monkeypatch.setenv("STORYWEAVE_SNAPSHOT_PATH", "saves/run.json")

    config = load_config(config_path=custom)

    assert config.app.log_level == "WARNING"
    assert config.storage.snapshot_path == (clean_env / "saves/run.json").resolve()


def test_env_wins_over_dotenv(clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (clean_env / ".env").write_text('STORYWEAVE_LOG_LEVEL="ERROR"\n', encoding="utf-8")
    monkeypatch.setenv("STORYWEAVE_LOG_LEVEL", "debug")

    config = load_config()

    assert config.app.log_level == "DEBUG"
