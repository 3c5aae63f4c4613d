# cmdhub/config.py
"""Application configuration using pydantic-settings.

Provides a centralized Settings class for all environment variables.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings are loaded from .env file and environment variables.
    Environment variables take precedence over .env file values.
    """

    # Discord REST API
    discord_token: str = ""
    discord_application_id: str = ""
    discord_api_base: str = "https://discord.com/api/v10"
    discord_request_timeout: float = 15.0
    discord_max_retries: int = 3

    # Storage
    database_path: str = "data/cmdhub.db"
    redis_url: str = "redis://localhost:6379/0"
    cache_ttl_seconds: int = 300  # 5 minutes

    # Mutation budget per (action, identifier)
    rate_limit_max_attempts: int = 5
    rate_limit_window_seconds: int = 3600  # 1 hour

    # Observability
    logfire_token: str = ""
    log_level: str = "INFO"

    # API Security
    api_auth_key: str = ""  # Required for API access (X-API-Key header)
    api_rate_limit: int = 60  # Requests per minute

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore unknown env vars
        case_sensitive=False,  # Allow case-insensitive env var names
    )

    @property
    def registry_configured(self) -> bool:
        """Check whether the Discord registry can be reached.

        Returns:
            True if both the bot token and the application ID are set.
        """
        return bool(self.discord_token and self.discord_application_id)


# Singleton instance - import this in your code
settings = Settings()
