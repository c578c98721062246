"""Configuration settings for the LoomIQ orchestration core.

Hierarchical configuration built on pydantic-settings. Every value can be
overridden through environment variables with the ``LOOMIQ_`` prefix and the
``__`` nested delimiter, e.g. ``LOOMIQ_SCHEDULER__MAX_CONCURRENT_TASKS=4``.

Per-agent configuration (capabilities, endpoint, cost model, timeout) lives in
a YAML file, ``config/agents.yaml`` by default, loaded by the agent registry.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RetrySettings(BaseSettings):
    """Retry and backoff policy for single-agent execution."""

    model_config = SettingsConfigDict(env_prefix="LOOMIQ_RETRY_")

    max_attempts: int = Field(3, ge=1, le=10, description="Attempts per task")
    base_delay_ms: int = Field(
        1_000, ge=0, le=60_000, description="Delay before the second attempt"
    )
    max_delay_ms: int = Field(
        30_000, ge=0, le=600_000, description="Upper bound for any single delay"
    )
    backoff_factor: float = Field(
        2.0, ge=1.0, le=10.0, description="Multiplier applied per attempt"
    )

    @model_validator(mode="after")
    def validate_delays(self) -> "RetrySettings":
        """Ensure the delay cap is not below the base delay."""
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError("max_delay_ms must be >= base_delay_ms")
        return self


class SchedulerSettings(BaseSettings):
    """Background scheduling pass configuration."""

    model_config = SettingsConfigDict(env_prefix="LOOMIQ_SCHEDULER_")

    max_concurrent_tasks: int = Field(
        10, ge=1, le=1000, description="Maximum simultaneously running tasks"
    )
    poll_interval_seconds: float = Field(
        10.0, gt=0.0, le=3600.0, description="Interval between scheduling passes"
    )


class CollaborationSettings(BaseSettings):
    """Collaboration session sizing."""

    model_config = SettingsConfigDict(env_prefix="LOOMIQ_COLLABORATION_")

    default_agent_count: int = Field(
        2, ge=2, le=10, description="Candidates for sequential and parallel"
    )
    consensus_agent_count: int = Field(
        3, ge=2, le=10, description="Candidates for consensus sessions"
    )
    hierarchical_agent_count: int = Field(
        3, ge=2, le=10, description="Lead plus workers for hierarchical sessions"
    )


class AgentSettings(BaseSettings):
    """Defaults applied to agents that do not override them."""

    model_config = SettingsConfigDict(env_prefix="LOOMIQ_AGENTS_")

    config_path: Path = Field(
        Path("config/agents.yaml"), description="YAML file with agent definitions"
    )
    default_timeout_seconds: float = Field(
        60.0, gt=0.0, le=3600.0, description="Per-request timeout"
    )
    default_model: str = Field("gpt-4o-mini", description="Fallback chat model")
    default_temperature: float = Field(0.7, ge=0.0, le=2.0)
    default_system_prompt: str = Field(
        "You are an AI assistant integrated into a multi-agent orchestration "
        "system.",
        description="System prompt used when an agent defines none",
    )


class DatabaseSettings(BaseSettings):
    """Optional SQL persistence for tasks."""

    model_config = SettingsConfigDict(env_prefix="LOOMIQ_DATABASE_")

    enabled: bool = Field(False, description="Persist tasks with SQLModel")
    url: str = Field("sqlite:///loomiq.db", description="Database connection URL")
    echo_sql: bool = Field(False, description="Enable SQL query logging")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Reject URLs without a driver scheme."""
        if "://" not in v:
            raise ValueError(f"Invalid database URL: {v}")
        return v


class LoomiqSettings(BaseSettings):
    """Root configuration aggregating all subsystem settings."""

    retry: RetrySettings = Field(default_factory=RetrySettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    collaboration: CollaborationSettings = Field(
        default_factory=CollaborationSettings
    )
    agents: AgentSettings = Field(default_factory=AgentSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)

    default_organization_id: str | None = Field(
        None, description="Organization assigned to tasks created without one"
    )
    debug_mode: bool = Field(False, description="Enable debug logging")
    log_level: str = Field(
        "INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        env_prefix="LOOMIQ_",
        extra="ignore",
        validate_default=True,
        case_sensitive=False,
        secrets_dir=os.getenv("LOOMIQ_SECRETS_DIR"),
        populate_by_name=True,
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the logging level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @model_validator(mode="after")
    def apply_debug_mode(self) -> "LoomiqSettings":
        """Debug mode forces DEBUG logging."""
        if self.debug_mode:
            self.log_level = "DEBUG"
        return self

    def get_agent_defaults(self) -> dict[str, Any]:
        """Defaults merged into every agent definition loaded from YAML."""
        return {
            "timeout": self.agents.default_timeout_seconds,
            "model": self.agents.default_model,
            "temperature": self.agents.default_temperature,
            "system_prompt": self.agents.default_system_prompt,
        }


@lru_cache(maxsize=1)
def get_settings() -> LoomiqSettings:
    """Get cached global settings instance."""
    return LoomiqSettings()


__all__ = [
    "AgentSettings",
    "CollaborationSettings",
    "DatabaseSettings",
    "LoomiqSettings",
    "RetrySettings",
    "SchedulerSettings",
    "get_settings",
]
