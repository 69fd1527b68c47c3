"""
Territory Revenue Attribution
Centralized Configuration Management

Configuration is loaded with Pydantic settings from environment variables
(and an optional .env file), validated and cached for the process lifetime.
"""

from datetime import date
from enum import Enum
from functools import lru_cache
from typing import Dict, Optional

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AttributionPolicy(str, Enum):
    """How a revenue fact is bound to a customer version when recorded"""
    FIXED_REFERENCE = "fixed_reference"  # keep the version passed by the caller
    AS_OF_DATE = "as_of_date"  # re-resolve the version valid on the revenue date


class DatabaseSettings(BaseSettings):
    """Relational store configuration"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="data_model", alias="database", description="Database name")
    user: str = Field(default="revenue", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    echo: bool = Field(default=False, description="Echo SQL queries")
    url: Optional[str] = Field(default=None, alias="DATABASE_URL", description="Full async URL (overrides host/port)")

    @property
    def async_url(self) -> str:
        """Async database URL, DATABASE_URL wins when set"""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class AttributionSettings(BaseSettings):
    """Revenue attribution behaviour"""

    model_config = SettingsConfigDict(env_prefix="ATTRIBUTION_")

    policy: AttributionPolicy = Field(
        default=AttributionPolicy.FIXED_REFERENCE,
        description="Customer version binding policy for new revenue facts",
    )


class CalendarSettings(BaseSettings):
    """Default coverage of the date registry"""

    model_config = SettingsConfigDict(env_prefix="CALENDAR_")

    start_date: date = Field(default=date(2022, 1, 1), description="First populated day")
    end_date: date = Field(default=date(2025, 1, 1), description="Last populated day (inclusive)")

    @model_validator(mode="after")
    def validate_range(self) -> "CalendarSettings":
        """Reject an inverted default range"""
        if self.end_date < self.start_date:
            raise ValueError("CALENDAR_END_DATE must not precede CALENDAR_START_DATE")
        return self


LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _check_level(level: str) -> str:
    if level.upper() not in LOG_LEVELS:
        raise ValueError(f"Log level must be one of: {list(LOG_LEVELS)}")
    return level.upper()


class MonitoringSettings(BaseSettings):
    """Logging configuration"""

    model_config = SettingsConfigDict(env_prefix="", populate_by_name=True)

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")
    log_module_levels: Dict[str, str] = Field(
        default_factory=lambda: {"sqlalchemy.engine": "WARNING", "aiosqlite": "WARNING"},
        alias="LOG_MODULE_LEVELS",
        description="Per-logger level overrides as JSON, e.g. {\"territory_revenue.dimensions\": \"DEBUG\"}",
    )

    @field_validator("log_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        return _check_level(v)

    @field_validator("log_module_levels")
    @classmethod
    def validate_module_levels(cls, v: Dict[str, str]) -> Dict[str, str]:
        return {name: _check_level(level) for name, level in v.items()}


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Application
    app_name: str = Field(default="territory-revenue", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    attribution: AttributionSettings = Field(default_factory=AttributionSettings)
    calendar: CalendarSettings = Field(default_factory=CalendarSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development"""
        return self.app_env == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
