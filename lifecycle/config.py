"""Pydantic Settings configuration models.

Config hierarchy (lowest to highest priority):
1. Pydantic defaults (in code below)
2. .env file (loaded by Pydantic Settings)
3. Environment variables (e.g., LIFECYCLE_PAYMENTS__MAX_RETRIES=5)

The engine never reads configuration itself. Callers pass these values
to the domain factories as keyword arguments.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from lifecycle.engine import DEFAULT_MAX_HISTORY_SIZE
from lifecycle.payments import DEFAULT_MAX_RETRIES

VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
VALID_LOG_FORMATS = frozenset({"console", "json"})


class EngineSettings(BaseModel):
    """Limits shared by every machine."""

    max_history_size: int = Field(default=DEFAULT_MAX_HISTORY_SIZE, ge=1, le=100_000)


class PaymentSettings(BaseModel):
    """Payment retry policy for newly created payments."""

    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0, le=10)


class AppConfig(BaseSettings):
    """Top-level application configuration.

    Env var examples:
        LIFECYCLE_LOG_LEVEL=DEBUG
        LIFECYCLE_LOG_FORMAT=json
        LIFECYCLE_ENGINE__MAX_HISTORY_SIZE=500
        LIFECYCLE_PAYMENTS__MAX_RETRIES=5
    """

    model_config = SettingsConfigDict(
        env_prefix="LIFECYCLE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"
    log_format: str = "console"
    engine: EngineSettings = EngineSettings()
    payments: PaymentSettings = PaymentSettings()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in VALID_LOG_LEVELS:
            raise ValueError(
                f"log_level must be one of {sorted(VALID_LOG_LEVELS)}, got {v}"
            )
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in VALID_LOG_FORMATS:
            raise ValueError(
                f"log_format must be one of {sorted(VALID_LOG_FORMATS)}, got {v}"
            )
        return v
