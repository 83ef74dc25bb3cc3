from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./perkmatch.db"
    redis_url: str = "redis://localhost:6379/0"
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None
    celery_default_queue: str = "perkmatch-default"

    # Transaction matching / drain loop
    matching_task_queue: str = "transaction-matching"
    matching_worker_enabled: bool = True
    matching_batch_size: int = Field(default=100, gt=0)
    matching_confidence_threshold: int = Field(default=80, ge=0)
    matching_max_batches_per_drain: int = Field(default=50, gt=0)
    matching_sweep_interval_seconds: int = Field(default=300, gt=0)

    # Reward ledger
    reward_code_length: int = Field(default=8, gt=0)
    reward_code_max_attempts: int = Field(default=5, gt=0)
    reward_progress_conflict_retries: int = Field(default=3, gt=0)

    # Internal API security (feed ingester, bank-sync webhooks, admin overrides)
    internal_api_key: str = ""

    # Notifications
    push_notifications_enabled: bool = True

    # Tracing (exporter endpoint comes from OTEL_EXPORTER_OTLP_ENDPOINT)
    tracing_sample_ratio: float = Field(default=1.0, ge=0.0, le=1.0)
    tracing_console_export: bool = False


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
