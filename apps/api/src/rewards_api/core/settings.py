from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # Record store (simple REST dialect)
    store_api_url: str = "http://localhost:8787/api"
    store_api_token: str | None = None
    store_timeout_seconds: float = 10.0
    store_page_size: int = Field(default=1000, ge=1)
    store_increment_max_attempts: int = Field(default=5, ge=1)

    # Airtable membership applications
    airtable_api_url: str = "https://api.airtable.com/v0"
    airtable_base_id: str = ""
    airtable_table_name: str = ""
    airtable_api_key: str = ""
    airtable_timeout_seconds: float = 15.0
    pending_member_source: str = "Airtable"

    # Recurring jobs
    job_scheduler_enabled: bool = False
    job_schedule_path: str = "config/schedules.toml"

    @field_validator("store_api_url", "airtable_api_url", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
