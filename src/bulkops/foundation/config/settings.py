"""Process configuration read from ``BULKOPS_*`` environment variables.

Each section is its own settings class with its own prefix, so a section
can be loaded on its own (``ExecutorSettings()``) or through the cached
root (``get_settings().executor``). A ``.env`` file in the working
directory is honoured by the root.

    BULKOPS_EXECUTOR_CONCURRENCY=8      -> get_settings().executor.concurrency
    BULKOPS_LOG_FORMAT=json             -> get_settings().logging.format
    BULKOPS_HTTP_BASE_URL=https://...   -> get_settings().http.base_url
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import (
    Field,
    NonNegativeFloat,
    NonNegativeInt,
    PositiveFloat,
    PositiveInt,
    computed_field,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

Seconds = NonNegativeFloat
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _section(prefix: str) -> SettingsConfigDict:
    return SettingsConfigDict(env_prefix=f"BULKOPS_{prefix}_", extra="ignore")


class ExecutorSettings(BaseSettings):
    """Defaults for BatchOperationConfig.from_settings()."""

    model_config = _section("EXECUTOR")

    batch_size: PositiveInt = 20
    concurrency: PositiveInt = 3
    request_delay: Seconds = Field(default=1.0, description="Gap enforced between two task starts")
    max_retries: Annotated[int, Field(ge=0, le=20)] = 3
    retry_delay: Seconds = Field(default=2.0, description="Wait before the first retry; doubles after")
    max_retry_delay: PositiveFloat | None = None
    progress_interval: Seconds = Field(default=0.0, description="Throttle for progress callbacks")
    timeout: PositiveFloat | None = Field(default=None, description="Run deadline; unfinished items are skipped")
    enable_progress_tracking: bool = True
    enable_performance_metrics: bool = True


class LoggingSettings(BaseSettings):
    model_config = _section("LOG")

    level: LogLevel = "INFO"
    format: Literal["console", "json", "none"] = "console"
    colors: bool | None = None  # None: decided by the output stream

    @field_validator("level", mode="before")
    @classmethod
    def _upper(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v


class HttpSettings(BaseSettings):
    """Where and how MailApiClient talks to the mail service."""

    model_config = _section("HTTP")

    base_url: str = "https://api.duckmail.sbs"
    provider: str = "duckmail"
    # Sent as X-API-Provider-Base-URL when base_url is a proxy in front of several providers.
    provider_base_url: str | None = None
    timeout: PositiveFloat = 30.0
    max_connections: NonNegativeInt = Field(default=20, description="0 lifts the connection cap")
    user_agent: str = "bulkops/1.0"


class BulkOpsSettings(BaseSettings):
    """All configuration sections plus the deployment environment."""

    model_config = SettingsConfigDict(
        env_prefix="BULKOPS_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        validate_default=True,
    )

    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"

    executor: ExecutorSettings = Field(default_factory=ExecutorSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)

    @field_validator("environment", mode="before")
    @classmethod
    def _lower(cls, v: object) -> object:
        return v.lower() if isinstance(v, str) else v

    @computed_field
    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> BulkOpsSettings:
    return BulkOpsSettings()


def clear_settings_cache() -> None:
    """Forget the cached settings; the next get_settings() rereads the environment."""
    get_settings.cache_clear()
