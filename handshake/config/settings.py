"""
Configuration Management for the Loan Handshake service

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: Protocol policy (code length, TTL, attempt ceilings) lives
here as settings, never as literals inside the services. Product defaults
match the mobile app: 6-digit codes, 7-day expiry, 5 attempts per hour.
"""

from datetime import timedelta
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class HandshakeSettings(BaseSettings):
    """Verification protocol policy."""

    model_config = SettingsConfigDict(
        env_prefix="HANDSHAKE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    code_length: int = Field(
        default=6,
        ge=4,
        le=10,
        description="Number of digits in a verification code"
    )
    code_ttl_days: int = Field(
        default=7,
        ge=1,
        le=90,
        description="Days an unused code stays valid"
    )
    max_code_generation_attempts: int = Field(
        default=10,
        ge=1,
        description="How many times to redraw a code that collides with an active one"
    )

    # Brute-force protection
    max_attempts_per_window: int = Field(
        default=5,
        ge=1,
        description="Verification attempts allowed per client address per window"
    )
    rate_limit_window_seconds: int = Field(
        default=3600,
        ge=1,
        description="Length of the rate-limit window in seconds"
    )

    # Identity matching
    phone_digits: int = Field(
        default=10,
        ge=6,
        le=15,
        description="Trailing digits compared when matching phone numbers"
    )

    # Share message
    share_base_url: str = Field(
        default="https://familyknows.in",
        description="Public base URL of the counterparty verification page"
    )
    app_display_name: str = Field(
        default="FamilyKnows",
        description="Product name used in share messages"
    )

    @field_validator('share_base_url')
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def code_ttl(self) -> timedelta:
        return timedelta(days=self.code_ttl_days)

    @property
    def rate_limit_window(self) -> timedelta:
        return timedelta(seconds=self.rate_limit_window_seconds)


class DatabaseSettings(BaseSettings):
    """Record store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: str = Field(
        default="sqlite:///./handshake.db",
        description="SQLAlchemy database URL"
    )
    echo: bool = Field(
        default=False,
        description="Log every SQL statement"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for structured logs"
    )

    # Reverse proxy
    trusted_proxies: list[str] = Field(
        default_factory=list,
        description="Peer addresses whose X-Forwarded-For header is believed, as a JSON list"
    )

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def handshake(self) -> HandshakeSettings:
        return HandshakeSettings()

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()
