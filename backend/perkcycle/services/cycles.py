"""Perk cycle boundary calculation service."""
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from dateutil.relativedelta import relativedelta

from perkcycle.models.catalog import RESET_ANNIVERSARY, RESET_CALENDAR

ONE_TICK = timedelta(microseconds=1)

PERIOD_NAMES = {
    1: "monthly",
    3: "quarterly",
    6: "semi-annual",
    12: "annual",
}


@dataclass(frozen=True)
class CycleBounds:
    """A renewal window. ``end`` is the last instant that still belongs to it."""

    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant <= self.end


@dataclass(frozen=True, order=True)
class CycleIdentifier:
    """Names one renewal window; a change means the cycle rolled over."""

    year: int
    index: int

    def __str__(self) -> str:
        return f"{self.year}-{self.index}"


def _validate(period_months: int, reset_policy: str) -> None:
    if period_months < 1:
        raise ValueError(f"Invalid period_months: {period_months}")
    if reset_policy not in (RESET_CALENDAR, RESET_ANNIVERSARY):
        raise ValueError(f"Unknown reset policy: {reset_policy}")


def _month_start(instant: datetime) -> datetime:
    return datetime(instant.year, instant.month, 1)


def _calendar_bounds(period_months: int, now: datetime) -> CycleBounds:
    if period_months == 1:
        # Month containing now
        start = _month_start(now)
    elif period_months == 3:
        # Q1: Jan-Mar, Q2: Apr-Jun, Q3: Jul-Sep, Q4: Oct-Dec
        quarter = (now.month - 1) // 3
        start = datetime(now.year, quarter * 3 + 1, 1)
    elif period_months == 6:
        # H1: Jan-Jun, H2: Jul-Dec
        start = datetime(now.year, 1 if now.month <= 6 else 7, 1)
    elif period_months == 12:
        start = datetime(now.year, 1, 1)
    else:
        # No calendar unit to align to: run period_months from the first of
        # the current month, stepping forward until the window reaches now.
        start = _month_start(now)
        while start + relativedelta(months=period_months) - ONE_TICK < now:
            start = start + relativedelta(months=period_months)

    return CycleBounds(start, start + relativedelta(months=period_months) - ONE_TICK)


def _anniversary_bounds(period_months: int, now: datetime, anchor: date | None) -> CycleBounds:
    if anchor is None:
        # Unanchored: the cycle simply runs period_months from now.
        return CycleBounds(now, now + relativedelta(months=period_months))

    # Step whole periods from the anchor; relativedelta from the anchor itself
    # keeps month-end anniversaries (Jan 31 -> Feb 28 -> Mar 31) stable.
    anchor_start = datetime(anchor.year, anchor.month, anchor.day)
    elapsed = (now.year - anchor_start.year) * 12 + (now.month - anchor_start.month)
    steps = elapsed // period_months
    start = anchor_start + relativedelta(months=steps * period_months)
    while start > now:
        steps -= 1
        start = anchor_start + relativedelta(months=steps * period_months)
    end = anchor_start + relativedelta(months=(steps + 1) * period_months) - ONE_TICK
    while end < now:
        steps += 1
        start = anchor_start + relativedelta(months=steps * period_months)
        end = anchor_start + relativedelta(months=(steps + 1) * period_months) - ONE_TICK
    return CycleBounds(start, end)


def bounds_for(
    period_months: int,
    reset_policy: str,
    now: datetime,
    anchor: date | None = None,
) -> CycleBounds:
    """Calculate the current renewal window for a perk.

    Args:
        period_months: Months between resets (1, 3, 6, 12, or any other positive count)
        reset_policy: calendar or anniversary
        now: The instant to find the window for
        anchor: Card anniversary for anniversary-reset perks

    Returns:
        CycleBounds with start <= now <= end
    """
    _validate(period_months, reset_policy)
    if reset_policy == RESET_ANNIVERSARY:
        return _anniversary_bounds(period_months, now, anchor)
    return _calendar_bounds(period_months, now)


def previous_bounds(
    bounds: CycleBounds,
    period_months: int,
    reset_policy: str,
    anchor: date | None = None,
) -> CycleBounds:
    """The window immediately before ``bounds``."""
    if reset_policy == RESET_ANNIVERSARY and anchor is not None:
        return bounds_for(period_months, reset_policy, bounds.start - ONE_TICK, anchor)
    start = bounds.start - relativedelta(months=period_months)
    return CycleBounds(start, bounds.start - ONE_TICK)


def next_bounds(
    bounds: CycleBounds,
    period_months: int,
    reset_policy: str,
    anchor: date | None = None,
) -> CycleBounds:
    """The window immediately after ``bounds``."""
    return bounds_for(period_months, reset_policy, bounds.end + ONE_TICK, anchor)


def cycle_identifier(
    period_months: int,
    reset_policy: str,
    now: datetime,
    anchor: date | None = None,
) -> CycleIdentifier:
    """Name the window containing ``now``."""
    bounds = bounds_for(period_months, reset_policy, now, anchor)
    if reset_policy == RESET_ANNIVERSARY and anchor is not None:
        elapsed = (bounds.start.year - anchor.year) * 12 + (bounds.start.month - anchor.month)
        return CycleIdentifier(anchor.year, elapsed // period_months)
    if reset_policy == RESET_CALENDAR and period_months in PERIOD_NAMES:
        return CycleIdentifier(bounds.start.year, (bounds.start.month - 1) // period_months)
    return CycleIdentifier(bounds.start.year, bounds.start.month - 1)


def days_remaining_in_cycle(bounds: CycleBounds, now: datetime) -> int:
    """Whole days left before the cycle resets."""
    return max(0, (bounds.end.date() - now.date()).days)


def is_cycle_expiring_soon(bounds: CycleBounds, now: datetime, threshold_days: int = 7) -> bool:
    """Check if a cycle ends within the threshold."""
    return days_remaining_in_cycle(bounds, now) <= threshold_days


def parse_anchor(value: str | None) -> date | None:
    """Parse a stored YYYY-MM-DD anniversary, ignoring malformed values."""
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        return None
