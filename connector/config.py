# connector/config.py
from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # App
    APP_ENV: Literal["dev", "prod", "staging"] = "dev"

    # Remote API (either a base URL or a config document to fetch)
    BASE_URL: Optional[str] = None
    CONFIG_PATH: Optional[str] = None
    DEFAULT_ENVIRONMENT: str = "DEV"

    # Token lifecycle
    TOKEN_DURATION_SECONDS: float = 20 * 60
    RENEW_MARGIN_SECONDS: float = 60
    INACTIVITY_CHECK_SECONDS: float = 60
    INACTIVITY_TIMEOUT_SECONDS: float = 15 * 60

    # Token persistence
    TOKEN_STORAGE_KEY: str = "token"
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_TOKEN_TTL_SECONDS: Optional[int] = None

    # HTTP
    HTTP_CONNECT_TIMEOUT: float = 3.0
    HTTP_READ_TIMEOUT: float = 12.0

    # read .env and ignore any extra keys
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

settings = Settings()
