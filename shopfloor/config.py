"""Runtime settings, read from the environment (prefix ``SHOPFLOOR_``) or ``.env``."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SHOPFLOOR_",
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    DATABASE_URL: str = "sqlite:///./shopfloor.db"
    DATABASE_ECHO: bool = False

    LOG_LEVEL: str = "INFO"
    LOG_SQL: bool = False

    # Slot duration used when a slot carries neither an end nor a duration
    DEFAULT_SLOT_DURATION_MIN: int = Field(default=60, gt=0)
    DEFAULT_ITEM_NAME: str = "Default Item"

    # How long a write waits for a busy machine/operator before giving up
    LOCK_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)


@lru_cache
def get_settings() -> Settings:
    return Settings()
