from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Bank API"
    version: str = "1.0.0"
    database_url: str = "sqlite:///bank_ledger.db"
    log_level: str = "INFO"

    db_pool_size: int = 10
    db_max_overflow: int = 10
    db_pool_timeout_seconds: float = 30.0
    sqlite_busy_timeout_seconds: float = 30.0
    # PostgreSQL only; aborts statements that outlive the caller's deadline.
    statement_timeout_ms: Optional[int] = None

    idempotency_retention_hours: int = 24
    idempotency_sweep_interval_seconds: float = 3600.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="BANK_",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
