"""Reminder schemas."""
from datetime import datetime, time

from pydantic import BaseModel, field_validator


class ReminderPreferences(BaseModel):
    """Per-user reminder settings, stored in ``User.settings``."""

    monthly_enabled: bool = True
    quarterly_enabled: bool = True
    semi_annual_enabled: bool = True
    annual_enabled: bool = True
    monthly_days: list[int] | None = None
    quarterly_days: list[int] | None = None
    semi_annual_days: list[int] | None = None
    annual_days: list[int] | None = None
    reminder_time: time | None = None

    @field_validator("monthly_days", "quarterly_days", "semi_annual_days", "annual_days")
    @classmethod
    def validate_days(cls, value: list[int] | None) -> list[int] | None:
        if value is None:
            return value
        if not value or any(day < 1 for day in value):
            raise ValueError("reminder days must be a non-empty list of positive integers")
        return sorted(set(value))

    def enabled_for(self, period_months: int) -> bool:
        return {
            1: self.monthly_enabled,
            3: self.quarterly_enabled,
            6: self.semi_annual_enabled,
            12: self.annual_enabled,
        }.get(period_months, True)

    def days_for(self, period_months: int) -> list[int] | None:
        """Custom offsets for a period, or None to use the defaults."""
        return {
            1: self.monthly_days,
            3: self.quarterly_days,
            6: self.semi_annual_days,
            12: self.annual_days,
        }.get(period_months)


class ScheduledReminderResponse(BaseModel):
    """Reminder handed to the notification delivery sink."""

    title: str
    body: str
    fire_at: datetime
    period_months: int
    days_before: int

    class Config:
        from_attributes = True


class OutboxSyncResponse(BaseModel):
    queued: int
    replaced: int
