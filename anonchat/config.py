from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./database.sqlite"

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Shared broadcast topic every session subscribes to
    CHANNEL_NAME: str = "chatroom"

    # Where client sessions reach the coordinator over HTTP
    API_ENDPOINT: str = "http://localhost:4000"
    REQUEST_TIMEOUT: float = 10.0


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
