"""Perk expiry reminder scheduling."""
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from perkcycle.config import get_settings
from perkcycle.models.catalog import RESET_CALENDAR, PerkDefinition
from perkcycle.models.redemption import STATUS_REDEEMED, RedemptionRecord
from perkcycle.services.cycles import PERIOD_NAMES, bounds_for
from perkcycle.services.status import active_record_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailablePerk:
    """A perk that still has value to capture this cycle."""

    perk_definition_id: str
    name: str
    remaining_value: float
    card_name: str | None = None


@dataclass(frozen=True)
class ScheduledReminder:
    """What the delivery sink should show, and when."""

    title: str
    body: str
    fire_at: datetime
    period_months: int
    days_before: int
    cycle_end: datetime


def available_perks_for(
    perks: Iterable[tuple[PerkDefinition, str | None]],
    records: Iterable[RedemptionRecord],
    now: datetime,
) -> list[AvailablePerk]:
    """Perks without a fully redeemed record in the current cycle.

    Partially redeemed perks stay in the list with their remaining value.
    """
    records = list(records)
    available = []
    for perk, card_name in perks:
        record = active_record_for(perk.id, records, now)
        if record is not None and record.status == STATUS_REDEEMED:
            continue
        remaining = record.remaining_value if record is not None else perk.value
        available.append(AvailablePerk(perk.id, perk.name, remaining, card_name))
    return available


def _money(amount: float) -> str:
    return f"${amount:,.0f}"


def compose_message(perks: list[AvailablePerk], days_before: int) -> tuple[str, str]:
    """Title and body for a reminder; the highest-value perk leads."""
    ranked = sorted(perks, key=lambda p: (-p.remaining_value, p.name))
    headline = ranked[0]
    total = sum(p.remaining_value for p in ranked)
    when = "today" if days_before <= 1 else f"in {days_before} days"

    if len(ranked) == 1:
        title = f"{headline.name} expires {when}"
        body = f"Your {headline.name} credit ({_money(headline.remaining_value)}) resets {when}. Use it before it's gone."
        return title, body

    title = f"{headline.name} + {len(ranked) - 1} more expiring {when}"
    others = ", ".join(f"{p.name} ({_money(p.remaining_value)})" for p in ranked[1:])
    body = (
        f"{headline.name} ({_money(headline.remaining_value)}) leads {len(ranked)} perks "
        f"worth {_money(total)} that reset {when}. Also waiting: {others}."
    )
    return title, body


def schedule_for(
    period_months: int,
    available_perks: list[AvailablePerk],
    now: datetime,
    offsets: Iterable[int] | None = None,
    reminder_time: time | None = None,
    reset_policy: str = RESET_CALENDAR,
    anchor: date | None = None,
) -> list[ScheduledReminder]:
    """Reminders for one period's still-available perks.

    For an offset of ``d`` days the reminder fires ``d - 1`` days before the
    cycle's last day, at ``reminder_time``. Fire times that are not in the
    future are dropped. Offsets and time default to the configured ones.
    """
    if not available_perks:
        logger.debug(f"No available {period_months}-month perks; nothing to remind")
        return []

    settings = get_settings()
    if offsets is None:
        offsets = settings.reminder_days_for(period_months)
    reminder_time = reminder_time or settings.reminder_time

    cycle_end = bounds_for(period_months, reset_policy, now, anchor).end
    days = sorted(set(offsets), reverse=True)

    reminders = []
    for days_before in days:
        fire_day = cycle_end.date() - timedelta(days=days_before - 1)
        fire_at = datetime.combine(fire_day, reminder_time)
        if fire_at <= now or fire_at >= cycle_end:
            continue
        title, body = compose_message(available_perks, days_before)
        reminders.append(ScheduledReminder(title, body, fire_at, period_months, days_before, cycle_end))

    period_name = PERIOD_NAMES.get(period_months, f"{period_months}-month")
    logger.info(f"Scheduled {len(reminders)} {period_name} reminder(s) for {len(available_perks)} perk(s)")
    return reminders
