"""Runtime configuration."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables (and an optional .env file)."""

    app_name: str = "Direct Messaging API"
    mongo_url: str = "mongodb://localhost:27017"
    mongo_db_name: str = "dmchat"
    redis_url: Optional[str] = None
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    room_multi_join: bool = False
    notify_max_attempts: int = 1
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
