"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    APP_NAME: str = "Event Workflow Automation Engine"
    APP_VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # Database Settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./automation.db"
    SQLALCHEMY_ECHO: bool = False
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Identity headers set by the upstream auth proxy (first present wins)
    ACTOR_ID_HEADERS: str = "X-User-Id,X-Hasura-User-Id"

    # Event ingestion limits
    EVENT_MAX_METADATA_BYTES: int = 16384

    # Workflow engine guards
    WORKFLOW_MAX_STEPS: int = 50
    RETRY_MAX_ATTEMPTS_CAP: int = 5
    RETRY_MAX_BACKOFF_MS: int = 3000

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def actor_id_headers_list(self) -> list[str]:
        """Parse ACTOR_ID_HEADERS string into a list."""
        return [h.strip() for h in self.ACTOR_ID_HEADERS.split(",") if h.strip()]

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Uses caching to ensure settings are loaded only once.

    Returns:
        Settings object with all configuration values
    """
    return Settings()
