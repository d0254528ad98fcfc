"""
Configuration module with strict validation.

Key principles:
- The engine starts with no environment at all (safe defaults everywhere)
- Scoring radii, cache bounds and seeds are configurable
- Invalid values fail at settings load, not mid-request
"""
from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with validation.

    Loads from environment variables and .env file.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./site_engine.db",
        description="SQLAlchemy connection URL for trade_areas / stores"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # Cache
    cache_ttl_seconds: float = Field(
        default=1800,
        gt=0,
        description="Default time-to-live for cached scoring results"
    )

    cache_max_size: int = Field(
        default=1000,
        ge=1,
        description="Maximum number of cached entries before eviction"
    )

    # Randomness
    random_seed: Optional[int] = Field(
        default=None,
        description="Seed for alternative-location jitter and simulated signals"
    )

    # Scoring
    cannibalization_radius_m: float = Field(
        default=5000,
        gt=0,
        description="Outlets beyond this distance are never affected"
    )

    pattern_analysis_radius_m: float = Field(
        default=10000,
        gt=0,
        description="Neighbourhood considered by the pattern detector"
    )

    default_limit: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Default number of ranked suggestions"
    )

    model_version: str = Field(
        default="v0.3",
        description="Version tag stamped on recomputed trade areas"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v_upper


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get or create the global settings instance.

    This pattern allows:
    - Easy testing (can reset settings between tests)
    - Lazy loading (only loads when first accessed)
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """
    Reset the global settings instance.

    Useful for testing to ensure clean state between tests.
    """
    global _settings
    _settings = None
