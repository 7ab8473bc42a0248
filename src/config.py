"""Application configuration via pydantic-settings.

All values can be overridden from environment variables (.env file).
Settings are organized into logical groups and composed into a single Settings object.
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ViesSettings(BaseSettings):
    """VIES SOAP endpoint and outbound resilience policy."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    vies_service_url: str = Field(
        default="https://ec.europa.eu/taxation_customs/vies/services/checkVatService",
        description="VIES checkVat SOAP endpoint",
    )
    vies_request_timeout: float = Field(
        default=30.0,
        description="Overall deadline for a checkVat call in seconds (retries included)",
    )
    vies_probe_timeout: float = Field(default=5.0, description="Deadline for the availability probe in seconds")
    vies_connect_timeout: float = Field(default=10.0, description="TCP connect timeout in seconds")
    vies_user_agent: str = Field(default="BelgiumVatChecker/1.0")

    # Retry: 2^attempt seconds between attempts
    vies_retry_count: int = Field(default=3, ge=0, description="Retries after the first attempt")
    vies_retry_backoff_base: float = Field(default=2.0, gt=0)

    # Circuit breaker
    vies_breaker_failure_threshold: int = Field(
        default=5,
        ge=1,
        description="Consecutive transient failures before the circuit opens",
    )
    vies_breaker_duration: float = Field(default=60.0, description="Seconds the circuit stays open")


class Settings(BaseSettings):
    """Root settings composing all sub-settings.

    Usage:
        settings = Settings()
        settings.vies.vies_service_url
        settings.log_level
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")

    vies: ViesSettings = Field(default_factory=ViesSettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid:
            msg = f"Invalid log level: {v}. Must be one of {valid}"
            raise ValueError(msg)
        return upper

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


# Module-level singleton, import this wherever settings are needed.
settings = Settings()
