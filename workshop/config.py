"""Runtime configuration, read from ``WORKSHOP_*`` environment variables."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="WORKSHOP_",
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    app_title: str = "Workshop Scheduling Service"
    log_level: str = "INFO"

    # Status values are opaque to the scheduling core; only task CRUD checks them.
    task_statuses: list[str] = [
        "PENDING",
        "SCHEDULED",
        "IN_PROGRESS",
        "COMPLETED",
        "CANCELLED",
        "BLOCKED",
    ]
    default_status: str = "PENDING"
    scheduled_status: str = "SCHEDULED"

    default_slot_duration_min: int = 60

    # Hold per-resource locks across the conflict check and the slot write.
    serialize_bookings: bool = True


@lru_cache
def get_settings() -> Settings:
    return Settings()
