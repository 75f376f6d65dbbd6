"""Configuration models and YAML loader for the matching pipeline."""

from enum import Enum
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


class BatchMode(str, Enum):
    """How a batch call treats individually malformed results.

    STRICT fails the whole batch. BEST_EFFORT drops the bad entries and
    reports them alongside the good ones.
    """

    STRICT = "strict"
    BEST_EFFORT = "best_effort"


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "data/matching.db"


class LLMConfig(BaseModel):
    """Which provider and model serve generation calls."""

    provider: str = "openai"
    model: str | None = None
    # None uses the provider's own embedding model
    embedding_model: str | None = None

    @field_validator("provider")
    @classmethod
    def provider_lowercase(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            msg = "llm.provider must not be empty"
            raise ValueError(msg)
        return v


class CacheConfig(BaseModel):
    """Search-spec cache settings. No TTL means entries live until evicted."""

    backend: Literal["memory", "sqlite"] = "sqlite"
    ttl_seconds: int | None = Field(default=None, ge=1)


class EngineConfig(BaseModel):
    """Enrichment and ranking batch behaviour."""

    enrich_batch_size: int = Field(default=5, ge=1, le=50)
    rank_batch_size: int = Field(default=5, ge=1, le=50)
    batch_mode: BatchMode = BatchMode.STRICT
    timeout_seconds: float | None = Field(default=120.0, gt=0)
    bisect_on_failure: bool = False


class QueueConfig(BaseModel):
    """Recompute queue defaults."""

    max_retries: int = Field(default=3, ge=1)
    default_priority: int = Field(default=5, ge=1, le=10)


class OrchestratorConfig(BaseModel):
    """Client-side polling of agent runs."""

    poll_interval_seconds: float = Field(default=5.0, gt=0)
    poll_timeout_seconds: float = Field(default=600.0, gt=0)

    @model_validator(mode="after")
    def interval_below_timeout(self) -> "OrchestratorConfig":
        if self.poll_interval_seconds > self.poll_timeout_seconds:
            msg = "poll_interval_seconds must not exceed poll_timeout_seconds"
            raise ValueError(msg)
        return self


class MatchingConfig(BaseModel):
    """Shortlisting before the expensive enrichment/ranking calls."""

    shortlist_enabled: bool = True
    shortlist_size: int = Field(default=50, ge=1)
    similarity_threshold: float = Field(default=0.2, ge=-1.0, le=1.0)
    max_jobs_per_run: int = Field(default=500, ge=1)


class RunnerConfig(BaseModel):
    """Task-execution substrate used by the run orchestrator."""

    kind: Literal["local", "trigger_dev"] = "local"
    base_url: str = "https://api.trigger.dev"
    timeout_seconds: float = Field(default=30.0, gt=0)


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)
