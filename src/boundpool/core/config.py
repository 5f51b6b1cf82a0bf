# src/boundpool/core/config.py
"""
Configuration schema and loading for boundpool.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

import re
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

# Names appear in logs and errors; keep them identifier-like
_VALID_NAME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_\-]*$")


def _validate_name(value: str) -> str:
    if not _VALID_NAME_PATTERN.match(value):
        raise ValueError(
            f"Invalid name: {value!r}. Name must start with a letter and contain only "
            "alphanumeric characters, underscores and hyphens."
        )
    return value


class PoolSettings(BaseModel):
    """Settings for a ResourcePool / AsyncResourcePool.

    The resources themselves are never configured here: collaborators
    construct them and pass them to ResourcePool.from_settings().

    Example YAML:
        pools:
          db:
            name: db
            acquire_timeout_seconds: 5
            max_waiters: 100
    """

    model_config = {"frozen": True, "extra": "forbid"}

    name: str = Field(default="pool", description="Pool name used in logs and errors")
    acquire_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Maximum seconds a wrapped call waits for a resource (None waits forever)",
    )
    max_waiters: int | None = Field(default=None, gt=0, description="Bound on queued acquirers")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _validate_name(v)


class LimiterSettings(BaseModel):
    """Settings for a PermitLimiter."""

    model_config = {"frozen": True, "extra": "forbid"}

    permits: int = Field(gt=0, description="Maximum concurrent holders")
    acquire_timeout_seconds: float | None = Field(default=None, gt=0, description="Maximum seconds to wait for a permit")
    max_waiters: int | None = Field(default=None, gt=0, description="Bound on queued acquirers")


class LoggingSettings(BaseModel):
    """Logging output settings."""

    model_config = {"frozen": True, "extra": "forbid"}

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO", description="Root log level")
    json_output: bool = Field(default=False, description="Emit JSON instead of console output")

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: object) -> object:
        """Accept lowercase level names from YAML or environment."""
        if isinstance(v, str):
            return v.upper()
        return v


class BoundPoolSettings(BaseModel):
    """Top-level settings.

    Example YAML:
        logging:
          level: INFO
          json_output: true
        default_permits: 4
        limiters:
          openai:
            permits: 8
            acquire_timeout_seconds: 30
        pools:
          db:
            name: db
            max_waiters: 50
    """

    model_config = {"frozen": True, "extra": "forbid"}

    logging: LoggingSettings = Field(default_factory=LoggingSettings, description="Logging output")
    default_permits: int = Field(default=4, gt=0, description="Permits for limiters without explicit settings")
    default_acquire_timeout_seconds: float | None = Field(
        default=None, gt=0, description="Acquire timeout for limiters without explicit settings"
    )
    limiters: dict[str, LimiterSettings] = Field(default_factory=dict, description="Per-service limiter settings")
    pools: dict[str, PoolSettings] = Field(default_factory=dict, description="Named pool settings")

    @field_validator("limiters", "pools")
    @classmethod
    def validate_keys(cls, v: dict[str, object]) -> dict[str, object]:
        for key in v:
            _validate_name(key)
        return v

    def get_limiter_settings(self, service_name: str) -> LimiterSettings:
        """Get limiter settings for a service, with fallback to defaults."""
        if service_name in self.limiters:
            return self.limiters[service_name]
        return LimiterSettings(
            permits=self.default_permits,
            acquire_timeout_seconds=self.default_acquire_timeout_seconds,
        )

    def get_pool_settings(self, pool_name: str) -> PoolSettings:
        """Get pool settings by name, defaulting to an unbounded pool of that name."""
        if pool_name in self.pools:
            return self.pools[pool_name]
        return PoolSettings(name=pool_name)


def load_settings(config_path: Path) -> BoundPoolSettings:
    """Load settings from YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (BOUNDPOOL_*) - highest priority
    2. Config file
    3. Defaults from Pydantic schema - lowest priority

    Environment variable format: BOUNDPOOL_LOGGING__LEVEL for nested keys.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated BoundPoolSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="BOUNDPOOL",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase top-level keys; Pydantic expects lowercase.
    # Nested keys keep their case, so service and pool names are preserved.
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}

    return BoundPoolSettings(**raw_config)
