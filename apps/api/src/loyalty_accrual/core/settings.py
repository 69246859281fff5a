from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./loyalty_accrual.db"
    api_host: str = "127.0.0.1"
    api_port: int = 8080

    # Accrual reconciliation loop
    accrual_worker_enabled: bool = True
    accrual_poll_interval_seconds: float = 5.0
    accrual_stage_concurrency: int = 4

    # Accrual oracle
    accrual_points_ceiling: int = 1000
    accrual_oracle_seed: int | None = None

    @field_validator("accrual_poll_interval_seconds", "accrual_stage_concurrency", "accrual_points_ceiling")
    @classmethod
    def _require_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
