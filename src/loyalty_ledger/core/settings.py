from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    service_name: str = "loyalty-ledger"
    database_url: str = "sqlite+aiosqlite:///./loyalty.db"

    # Ledger rules
    points_expiry_days: int = Field(default=365, gt=0)
    dedupe_order_earnings: bool = True
    tier_table_path: str | None = None

    @field_validator("tier_table_path", mode="before")
    @classmethod
    def _blank_path_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    # Expiration sweep
    expiration_worker_enabled: bool = False
    expiration_interval_seconds: int = 60 * 60


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]
