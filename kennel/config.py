"""Runtime configuration loaded from the environment (or a .env file)."""
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "Kennel Access Core"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # PostgreSQL in production, SQLite locally
    DATABASE_URL: str = "sqlite:///./kennel.db"

    # Override tokens
    OVERRIDE_HMAC_SECRET: str = "dev-override-secret-change-me"
    OVERRIDE_MAX_MINUTES: int = 15
    OVERRIDE_SESSION_MINUTES: int = 15

    # MFA recency windows
    MFA_FRESH_MINUTES: int = 5
    MFA_RECENT_HOURS: int = 12
    MFA_ENFORCE_PRIVILEGED: bool = True

    # Audit
    AUDIT_DENIALS: bool = False

    CRUD_DEFAULT_PAGE_SIZE: int = 20
    CRUD_MAX_PAGE_SIZE: int = 100

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    @field_validator("DATABASE_URL")
    @classmethod
    def _fix_postgres_scheme(cls, value: str) -> str:
        # Render/Heroku hand out postgres:// but SQLAlchemy needs postgresql://
        if value.startswith("postgres://"):
            return value.replace("postgres://", "postgresql://", 1)
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
