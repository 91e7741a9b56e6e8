from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Castline"
    app_env: str = "development"
    log_level: str = "INFO"
    library_log_level: str = "WARNING"

    database_url: str = "sqlite:///./data/castline.db"
    data_dir: Path = Path("./data")

    max_batch_size: int = 500
    cascade_retry_attempts: int = 3
    cascade_retry_backoff_sec: float = 0.5

    archive_after_days: int = 30
    migration_actor: str = "migration-script"
    active_booking_count_fail_open: bool = True

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, value: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if value not in allowed:
            raise ValueError(f"app_env must be one of {sorted(allowed)}")
        return value

    @field_validator("max_batch_size", "cascade_retry_attempts")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("cascade_retry_backoff_sec")
    @classmethod
    def validate_backoff(cls, value: float) -> float:
        if value < 0:
            raise ValueError("cascade_retry_backoff_sec must not be negative")
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
