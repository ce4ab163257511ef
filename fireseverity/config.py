"""
Configuration using Pydantic Settings.

Provides centralized configuration for batch runs with environment variable
loading (prefix FIRESEV_) and validation.
"""

import logging
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional, Union

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ExportMode(str, Enum):
    """Which events of a fire year are exported."""

    FIRST = "first"
    ALL = "all"


class ExecutionSettings(BaseSettings):
    """Block-wise execution settings."""

    model_config = SettingsConfigDict(
        env_prefix="FIRESEV_EXECUTION_",
        env_file=".env",
        extra="ignore",
    )

    tile_size: int = Field(default=512, ge=1, description="Tile edge length in pixels")
    max_workers: int = Field(default=1, ge=1, description="Worker threads for tiled evaluation")


class Settings(BaseSettings):
    """Main batch settings."""

    model_config = SettingsConfigDict(
        env_prefix="FIRESEV_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")

    # Study period
    preset: str = Field(default="extended_medoid", description="Window policy name")
    start_year: int = Field(default=1985, description="First fire year")
    end_year: int = Field(default=2021, description="Last fire year (inclusive)")

    # Outputs
    export_scale: float = Field(default=30.0, gt=0, description="Export scale in map units")
    export_mode: ExportMode = Field(default=ExportMode.FIRST, description="first or all")
    sample_points: bool = Field(default=False, description="Export per-year point samples")
    composite_reference: str = Field(
        default="mean", description="Nearest-to-mean reference statistic: mean or median"
    )

    policies_file: Optional[Path] = Field(
        default=None, description="YAML file with additional window policies"
    )

    # Nested settings
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)

    @field_validator("export_mode", mode="before")
    @classmethod
    def normalize_export_mode(cls, v: Union[str, ExportMode]) -> Union[str, ExportMode]:
        """Accept export modes in any case."""
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("composite_reference")
    @classmethod
    def check_reference(cls, v: str) -> str:
        if v not in ("mean", "median"):
            raise ValueError(f"composite_reference must be 'mean' or 'median', got {v}")
        return v

    @model_validator(mode="after")
    def check_year_range(self) -> "Settings":
        """Ensure the study period is not inverted."""
        if self.end_year < self.start_year:
            raise ValueError(
                f"end_year ({self.end_year}) must not precede start_year ({self.start_year})"
            )
        return self

    def to_dict(self) -> Dict[str, object]:
        """Convert to a JSON-friendly dictionary."""
        return self.model_dump(mode="json")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance with loaded configuration.
    """
    return Settings()


def get_settings_uncached() -> Settings:
    """Get a fresh settings instance (useful for testing)."""
    return Settings()


def configure_logging(level: Union[str, LogLevel] = LogLevel.INFO) -> None:
    """Configure root logging with the standard format."""
    if isinstance(level, LogLevel):
        level = level.value
    logging.basicConfig(level=getattr(logging, str(level).upper(), logging.INFO), format=LOG_FORMAT)
