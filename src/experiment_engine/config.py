"""
Engine settings.

Defaults match the production setup; every field can be overridden with an
EXPERIMENT_ENGINE_<FIELD> environment variable. Values are validated on load,
so an out-of-range setting fails at startup instead of inside the statistics.
"""

import logging
from typing import Any, Mapping, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PREFIX = "EXPERIMENT_ENGINE_"
DEFAULT_DATA_DIR = "data/experiments"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class EngineSettings(BaseSettings):
    """Tunables for monitoring, statistics and bias detection."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
    )

    monitor_interval_seconds: float = Field(default=60.0, gt=0, description="Seconds between monitor ticks")
    ci_level: float = Field(default=0.95, gt=0, lt=1, description="Confidence level of reported intervals")
    selection_imbalance_threshold: float = Field(
        default=0.2,
        gt=0,
        le=1,
        description="Relative deviation from the expected arm size that flags selection bias",
    )
    cultural_underrepresentation_threshold: float = Field(
        default=0.2,
        gt=0,
        le=1,
        description="Relative shortfall of a segment's share that flags cultural bias",
    )
    dropout_spread_threshold: float = Field(
        default=0.15,
        gt=0,
        le=1,
        description="Max minus min per-arm dropout rate that flags survival bias",
    )
    data_dir: str = Field(default=DEFAULT_DATA_DIR, description="Directory of the durable store")
    log_level: str = Field(default="INFO", description="Root log level for scripts")

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> str:
        level = str(v).strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}")
        return level

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineSettings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read instead of the process environment

        Returns:
            Validated EngineSettings

        Raises:
            pydantic.ValidationError: if a value is malformed or out of range
        """
        if environ is None:
            return cls()
        overrides = {
            key[len(ENV_PREFIX):].lower(): value
            for key, value in environ.items()
            if key.upper().startswith(ENV_PREFIX) and value != ""
        }
        return cls(**overrides)


def configure_logging(level: str = "INFO") -> None:
    """Basic root handler for scripts and local runs."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
