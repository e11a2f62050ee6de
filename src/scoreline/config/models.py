"""Pydantic configuration models for the settlement pipeline."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class Environment(StrEnum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    PRODUCTION = "production"


class DatabaseConfig(BaseModel):
    """Database configuration."""

    url: str = "sqlite:///scoreline.db"
    echo: bool = False


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    json_output: bool = True
    log_dir: str = "logs"
    max_bytes: int = Field(default=10 * 1024 * 1024, ge=0)
    backup_count: int = Field(default=5, ge=0)

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid}")
        return upper


class JobsConfig(BaseModel):
    """Background job retry and recovery settings."""

    default_max_retries: int = Field(default=3, ge=0)
    retry_backoff_seconds: float = Field(default=5.0, ge=0.0)
    max_backoff_seconds: float = Field(default=300.0, ge=0.0)
    stale_minutes: int = Field(default=15, ge=1)
    poll_interval_seconds: int = Field(default=60, ge=0)

    @model_validator(mode="after")
    def check_backoff(self) -> JobsConfig:
        if self.max_backoff_seconds < self.retry_backoff_seconds:
            raise ValueError("max_backoff_seconds must be >= retry_backoff_seconds")
        return self


class RuntimeConfig(BaseModel):
    """Worker pool settings."""

    worker_count: int = Field(default=2, ge=1)
    metrics_log_interval_seconds: int = Field(default=300, ge=0)


class ScoringConfig(BaseModel):
    """Default scoring rules for new leagues."""

    exact_match_points: int = Field(default=3, ge=0)
    correct_result_points: int = Field(default=1, ge=0)


class MetricsConfig(BaseModel):
    """Metrics HTTP endpoint."""

    enabled: bool = False
    port: int = Field(default=9090, ge=1, le=65535)


class DiscordConfig(BaseModel):
    """Discord alerting configuration."""

    webhook_url: str = ""
    enabled: bool = False
    alert_on_failed_jobs: bool = True
    alert_on_recovery: bool = True


class AppConfig(BaseModel):
    """Top-level application configuration."""

    environment: Environment = Environment.DEVELOPMENT
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    jobs: JobsConfig = Field(default_factory=JobsConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    discord: DiscordConfig = Field(default_factory=DiscordConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AppConfig:
        return cls.model_validate(data)
