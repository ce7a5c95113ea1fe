"""Application configuration."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables."""

    reports_queue: str = "task_reports"
    prefetch_count: int = Field(default=1, ge=1)
    ack_policy: Literal["classified", "always"] = "classified"
    max_redeliveries: int = Field(default=3, ge=0)
    max_tracked_messages: int = Field(default=10_000, ge=1)
    stale_attempt_timeout_seconds: float | None = Field(default=None, gt=0)
    legacy_missing_message_text: bool = False
    # Unset means the internal HTTP surface rejects every request.
    internal_secret: str | None = None

    model_config = SettingsConfigDict(env_prefix="RENDERFARM_", extra="ignore")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
