from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


DEFAULT_PENALTIES: dict[str, int] = {
    "character": 10,
    "location": 8,
    "timeline": 15,
    "plot": 12,
    "world_state": 7,
}


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    data_dir: Path = Field(default=Path("./data"))
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unsupported log level: {value}")
        return level


class MemoryBankConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_size_bytes: int | None = 1_048_576
    compress: bool = False
    cleanup_max_age_hours: float = 24
    cleanup_max_total_bytes: int = 10 * 1024 * 1024
    keep_active: bool = True

    @field_validator("max_size_bytes")
    @classmethod
    def _positive_optional_size(cls, value: int | None) -> int | None:
        if value is not None and value <= 0:
            raise ValueError("max_size_bytes must be positive when provided")
        return value

    @field_validator("cleanup_max_age_hours", "cleanup_max_total_bytes")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("memory bank cleanup limits must be non-negative")
        return value


class AuditConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    window_size: int = 10
    revision_threshold: int = 60
    max_major_findings: int = 2
    plot_open_turns: int = 5
    world_state_gap: int = 3
    penalties: dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_PENALTIES))

    @field_validator("window_size")
    @classmethod
    def _window_range(cls, value: int) -> int:
        if not 1 <= value <= 50:
            raise ValueError("window_size must be between 1 and 50")
        return value

    @field_validator("revision_threshold")
    @classmethod
    def _threshold_range(cls, value: int) -> int:
        if not 0 <= value <= 100:
            raise ValueError("revision_threshold must be between 0 and 100")
        return value

    @field_validator("max_major_findings", "plot_open_turns", "world_state_gap")
    @classmethod
    def _non_negative_int(cls, value: int) -> int:
        if value < 0:
            raise ValueError("audit integer settings must be non-negative")
        return value

    @field_validator("penalties")
    @classmethod
    def _validate_penalties(cls, value: dict[str, int]) -> dict[str, int]:
        unknown = set(value) - set(DEFAULT_PENALTIES)
        if unknown:
            raise ValueError(f"unknown penalty keys: {sorted(unknown)}")
        if any(weight < 0 for weight in value.values()):
            raise ValueError("penalties must be non-negative")
        return {**DEFAULT_PENALTIES, **value}


class SelectorConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    context_max_elements: int = 10
    ready_limit: int = 5
    description_chars: int = 100

    @field_validator("context_max_elements", "ready_limit", "description_chars")
    @classmethod
    def _positive_int(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("selector integer settings must be positive")
        return value


class ConsistencyCheckerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    strict_mode: bool = False
    history_limit: int = 10

    @field_validator("history_limit")
    @classmethod
    def _positive_history(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("history_limit must be positive")
        return value


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    snapshot_path: Path = Field(default=Path("./data/story.json"))


class AppConfigRoot(BaseModel):
    model_config = ConfigDict(extra="forbid")

    app: AppConfig = AppConfig()
    memory: MemoryBankConfig = MemoryBankConfig()
    audit: AuditConfig = AuditConfig()
    selector: SelectorConfig = SelectorConfig()
    checker: ConsistencyCheckerConfig = ConsistencyCheckerConfig()
    storage: StorageConfig = StorageConfig()

    @model_validator(mode="after")
    def _validate_memory_limits(self) -> "AppConfigRoot":
        max_size = self.memory.max_size_bytes
        if max_size is not None and max_size > self.memory.cleanup_max_total_bytes > 0:
            raise ValueError("memory.max_size_bytes cannot exceed memory.cleanup_max_total_bytes")
        return self


def resolve_paths(config: AppConfigRoot, base_dir: Path) -> AppConfigRoot:
    def _resolve(path_value: Path) -> Path:
        return path_value if path_value.is_absolute() else (base_dir / path_value).resolve()

    config.app.data_dir = _resolve(config.app.data_dir)
    config.storage.snapshot_path = _resolve(config.storage.snapshot_path)
    return config
