"""
Configuration management using Pydantic Settings.
Loads environment variables from .env file.
"""
from functools import lru_cache
from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Echo Bot"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"

    # Discord Gateway
    discord_token: str
    ready_text: str = "Echo Client Ready"
    enable_message_content: bool = False

    # Supabase Configuration (guild settings store)
    supabase_url: str
    supabase_anon_key: str
    guild_settings_table: str = "guild_settings"

    # Command defaults
    default_prefix: str = "!"
    pause_on_start: bool = True  # Emit PAUSE on first ready so defaults get seeded

    # Connection Supervisor
    disconnect_alert_threshold: int = 10  # Log a terminal warning at this many disconnects
    normal_close_code: int = 1000

    # Scheduler Settings
    scheduler_timezone: str = "UTC"
    misfire_grace_seconds: int = 60

    # Send monitoring
    send_failure_window_hours: int = 24

    @property
    def effective_log_level(self) -> str:
        """DEBUG when debug mode is on, otherwise the configured level."""
        return "DEBUG" if self.debug else self.log_level.upper()


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings instance.
    Call this function to get application settings.

    Raises:
        ConfigurationError: a required setting is missing or invalid
    """
    try:
        return Settings()
    except PydanticValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        config_key = ".".join(str(part) for part in first.get("loc", ())) or "unknown"
        error_type = first.get("type")
        # A missing field has no value to report
        actual_value = None if error_type == "missing" else first.get("input")
        raise ConfigurationError(
            f"Invalid configuration: {first.get('msg', str(e))}",
            config_key=config_key,
            expected_type=error_type,
            actual_value=str(actual_value) if actual_value is not None else None,
        ) from e
