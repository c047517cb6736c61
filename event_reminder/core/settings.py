from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Event Reminder Bot"
    app_env: str = "dev"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_timezone: str = Field(default="Europe/Moscow")

    telegram_bot_token: str = Field(default="test-token")

    database_url: str = Field(default="postgresql+psycopg://postgres:postgres@db:5432/event_reminder")
    app_log_level: str = Field(default="INFO")

    reminder_sweep_interval_seconds: int = Field(default=60)
    reminder_sweep_batch_size: int = Field(default=100)
    restore_on_startup: bool = Field(default=True)
    max_periodic_events: int = Field(default=100, ge=1)
    daily_digest_enabled: bool = Field(default=True)
    daily_digest_hour: int = Field(default=8, ge=0, le=23)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
