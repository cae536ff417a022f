# Environment settings
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./twokaj.db"

    # JWT
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # CORS
    ALLOWED_ORIGINS: str = "*"

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Allow extra env vars without error


class ClientSettings(BaseSettings):
    """
    Settings for the on-device side (local store, sync engine, triggers).
    Read from TWOKAJ_* environment variables.
    """
    API_BASE_URL: str = "http://localhost:8000"
    LOCAL_DB_PATH: str = "./twokaj_local.db"

    # Network
    REQUEST_TIMEOUT_SECONDS: float = 10.0
    CHECK_INTERVAL_SECONDS: float = 15.0
    SYNC_INTERVAL_SECONDS: float = 30.0

    # Retry policy
    BACKOFF_BASE_SECONDS: float = 2.0
    BACKOFF_MAX_SECONDS: float = 300.0
    MAX_ATTEMPTS: int = 8

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        env_prefix = "TWOKAJ_"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings():
    return Settings()


@lru_cache()
def get_client_settings():
    return ClientSettings()
