import os
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    daily_available_hours: float = Field(6.0, gt=0, le=24, alias="REPLANNER_DAILY_AVAILABLE_HOURS")
    study_window_start_hour: int = Field(9, ge=0, le=23, alias="REPLANNER_STUDY_WINDOW_START_HOUR")
    study_window_end_hour: int = Field(17, ge=1, le=24, alias="REPLANNER_STUDY_WINDOW_END_HOUR")
    work_days: List[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4], alias="REPLANNER_WORK_DAYS")
    buffer_days: int = Field(0, ge=0, alias="REPLANNER_BUFFER_DAYS")
    min_session_minutes: int = Field(30, ge=1, alias="REPLANNER_MIN_SESSION_MINUTES")
    slot_buffer_minutes: int = Field(0, ge=0, alias="REPLANNER_SLOT_BUFFER_MINUTES")
    slot_granularity_minutes: int = Field(15, ge=1, le=60, alias="REPLANNER_SLOT_GRANULARITY_MINUTES")
    max_redistribution_days: int = Field(60, ge=1, alias="REPLANNER_MAX_REDISTRIBUTION_DAYS")
    max_day_iterations: int = Field(400, ge=1, alias="REPLANNER_MAX_DAY_ITERATIONS")
    timezone: Optional[str] = Field(None, alias="REPLANNER_TIMEZONE")

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        populate_by_name = True


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[call-arg]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid replanner configuration: {exc}") from exc


def default_scheduling_settings():
    """Per-user scheduling settings seeded from the process configuration."""
    from .models import SchedulingSettings

    settings = get_settings()
    return SchedulingSettings(
        daily_available_hours=settings.daily_available_hours,
        study_window_start_hour=settings.study_window_start_hour,
        study_window_end_hour=settings.study_window_end_hour,
        work_days=list(settings.work_days),
        buffer_days=settings.buffer_days,
        min_session_minutes=settings.min_session_minutes,
        slot_buffer_minutes=settings.slot_buffer_minutes,
    )
