"""Application configuration."""
from datetime import time
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App
    app_name: str = "Perkcycle"
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Database
    database_url: str = "sqlite:///./data/perkcycle.db"

    # Redemptions
    undo_window_seconds: float = 4.0

    # Reminders (days before cycle end)
    reminder_time: time = time(10, 0)
    monthly_reminder_days: list[int] = [1, 3, 7]
    quarterly_reminder_days: list[int] = [7, 14]
    semi_annual_reminder_days: list[int] = [14, 30]
    annual_reminder_days: list[int] = [30, 60]
    default_reminder_days: list[int] = [7]

    # Paths
    base_dir: Path = Path(__file__).parent
    catalog_dir: Path = base_dir / "configs" / "cards"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @field_validator(
        "monthly_reminder_days",
        "quarterly_reminder_days",
        "semi_annual_reminder_days",
        "annual_reminder_days",
        "default_reminder_days",
    )
    @classmethod
    def validate_reminder_days(cls, value: list[int]) -> list[int]:
        """Reminder offsets must be a non-empty list of positive day counts."""
        if not value:
            raise ValueError("reminder day list must not be empty")
        if any(day < 1 for day in value):
            raise ValueError("reminder days must be positive")
        return sorted(set(value))

    @field_validator("undo_window_seconds")
    @classmethod
    def validate_undo_window(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("undo_window_seconds must be positive")
        return value

    def reminder_days_for(self, period_months: int) -> list[int]:
        """Default reminder offsets for a perk period."""
        return {
            1: self.monthly_reminder_days,
            3: self.quarterly_reminder_days,
            6: self.semi_annual_reminder_days,
            12: self.annual_reminder_days,
        }.get(period_months, self.default_reminder_days)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
