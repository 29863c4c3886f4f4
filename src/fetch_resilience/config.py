"""Configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Dict, List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .connectivity import (
    DEFAULT_HEALTH_PATH,
    DEFAULT_INTERNET_ENDPOINTS,
    DEFAULT_INTERNET_TIMEOUT_SECONDS,
    DEFAULT_PING_TIMEOUT_SECONDS,
    DEFAULT_SERVER_TIMEOUT_SECONDS,
)
from .policies import DEFAULT_AUTH_PATTERN


class Settings(BaseSettings):
    """Settings loaded from FETCH_RESILIENCE_* environment variables."""

    # Backend
    BACKEND_URL: Optional[str] = None
    HEALTH_PATH: str = DEFAULT_HEALTH_PATH
    DEFAULT_HEADERS: Dict[str, str] = {"Content-Type": "application/json"}

    # Connectivity
    INTERNET_CHECK_URLS: List[str] = list(DEFAULT_INTERNET_ENDPOINTS)
    INTERNET_CHECK_TIMEOUT_SECONDS: float = DEFAULT_INTERNET_TIMEOUT_SECONDS
    SERVER_CHECK_TIMEOUT_SECONDS: float = DEFAULT_SERVER_TIMEOUT_SECONDS
    PING_TIMEOUT_SECONDS: float = DEFAULT_PING_TIMEOUT_SECONDS

    # Pipeline
    PREFLIGHT_AUTH_CHECK: bool = True
    AUTH_URL_PATTERN: str = DEFAULT_AUTH_PATTERN

    model_config = SettingsConfigDict(
        env_prefix="FETCH_RESILIENCE_",
        case_sensitive=True,
        env_file=None,  # Use system env only
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
