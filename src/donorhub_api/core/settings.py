from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./donorhub.db"
    database_echo: bool = False
    redis_url: str = "redis://localhost:6379/0"
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None
    celery_default_queue: str = "donorhub-default"

    # Application URLs
    frontend_url: str = "http://localhost:5173"
    api_base_url: str = "http://localhost:8000"

    # Internal API security (merchant terminals, donation recorder, admin tooling)
    rewards_api_key: str = ""

    # Points program defaults; reward_settings rows override these at runtime
    rewards_points_per_donation: int = 100
    rewards_voucher_ttl_hours: int = 24
    rewards_expired_retention_days: int = 7

    # Ledger concurrency
    rewards_balance_max_retries: int = 3
    rewards_voucher_code_max_attempts: int = 5

    # Voucher cleanup automation
    rewards_job_scheduler_enabled: bool = False
    rewards_job_schedule_path: str = "config/schedules.toml"
    rewards_cleanup_task_queue: str = "rewards-cleanup"

    @field_validator(
        "rewards_points_per_donation",
        "rewards_voucher_ttl_hours",
        "rewards_expired_retention_days",
        "rewards_voucher_code_max_attempts",
        mode="after",
    )
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("Rewards program settings must be positive")
        return value

    @field_validator("rewards_balance_max_retries", mode="after")
    @classmethod
    def _clamp_retries(cls, value: int) -> int:
        return max(value, 1)


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
