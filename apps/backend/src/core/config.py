from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

from constants import REGISTRY_ARCHIVE_URL, REGISTRY_RAW_BASE_URL


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./registry.db"
    redis_url: str = ""

    # Comma separated; empty disables the admin surface
    admin_api_keys: str = ""

    registry_archive_url: str = REGISTRY_ARCHIVE_URL
    registry_raw_base_url: str = REGISTRY_RAW_BASE_URL
    fetch_timeout_seconds: float = 30.0
    fetch_concurrency: int = 8

    environment: str = "development"
    cors_origins: str = "http://localhost:3000"

    log_level: str = "INFO"
    log_format: str = "text"

    model_config = SettingsConfigDict(
        env_file=".env.local",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def admin_keys(self) -> list[str]:
        return [k.strip() for k in self.admin_api_keys.split(",") if k.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
