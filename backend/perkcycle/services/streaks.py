"""Hot and cold streak tracking across perk cycles."""
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import date, datetime

from perkcycle.models.catalog import RESET_ANNIVERSARY, PerkDefinition
from perkcycle.models.redemption import RedemptionRecord
from perkcycle.services.cycles import (
    CycleBounds,
    CycleIdentifier,
    bounds_for,
    cycle_identifier,
    next_bounds,
    previous_bounds,
)

VISIBLE_STREAK_PERIOD_MONTHS = 1


@dataclass(frozen=True)
class StreakState:
    streak_count: int = 0
    cold_streak_count: int = 0
    cycle: CycleIdentifier | None = None


def advance(state: StreakState, redeemed: bool, next_cycle: CycleIdentifier | None = None) -> StreakState:
    """Close one cycle: a redeemed cycle extends the streak, a missed one the cold streak."""
    if redeemed:
        return replace(
            state,
            streak_count=state.streak_count + 1,
            cold_streak_count=0,
            cycle=next_cycle,
        )
    return replace(
        state,
        streak_count=0,
        cold_streak_count=state.cold_streak_count + 1,
        cycle=next_cycle,
    )


def roll_to(
    state: StreakState,
    target: CycleBounds,
    period_months: int,
    reset_policy: str,
    was_redeemed: Callable[[CycleBounds], bool],
    anchor: date | None = None,
) -> StreakState:
    """Apply every rollover between the state's cycle and ``target``.

    ``state.cycle`` must name a cycle at or before ``target``; a state already
    at the target cycle is returned unchanged.
    """
    target_id = cycle_identifier(period_months, reset_policy, target.start, anchor)
    if state.cycle is None or state.cycle >= target_id:
        return replace(state, cycle=target_id) if state.cycle is None else state

    # Walk back to the state's cycle, then replay forward in order.
    closed = []
    cursor = previous_bounds(target, period_months, reset_policy, anchor)
    while cycle_identifier(period_months, reset_policy, cursor.start, anchor) >= state.cycle:
        closed.append(cursor)
        cursor = previous_bounds(cursor, period_months, reset_policy, anchor)

    updated = state
    for bounds in reversed(closed):
        nxt = next_bounds(bounds, period_months, reset_policy, anchor)
        updated = advance(
            updated,
            was_redeemed(bounds),
            cycle_identifier(period_months, reset_policy, nxt.start, anchor),
        )
    return updated


def _redeemed_in(records: list[RedemptionRecord], bounds: CycleBounds) -> bool:
    return any(bounds.contains(r.redemption_instant) for r in records)


def streak_for(
    perk: PerkDefinition,
    records: Iterable[RedemptionRecord],
    now: datetime,
    anchor: date | None = None,
    since: datetime | None = None,
) -> StreakState:
    """Derive a perk's counters from its ledger history.

    Closed cycles are replayed from the first cycle touched by a record (or
    ``since``, usually the enrollment date). A redemption in the still-open
    cycle counts once toward the streak, provisionally; the rollover that
    closes the cycle attributes the same increment, so the number does not jump.
    """
    perk_records = [r for r in records if r.perk_definition_id == perk.id]
    instants = [r.redemption_instant for r in perk_records]
    if since is not None:
        instants.append(since)
    if perk.reset_policy == RESET_ANNIVERSARY and anchor is None and instants:
        anchor = min(instants).date()

    current = bounds_for(perk.period_months, perk.reset_policy, now, anchor)
    current_id = cycle_identifier(perk.period_months, perk.reset_policy, now, anchor)
    if not instants:
        return StreakState(cycle=current_id)

    first = bounds_for(perk.period_months, perk.reset_policy, min(min(instants), now), anchor)
    state = StreakState(cycle=cycle_identifier(perk.period_months, perk.reset_policy, first.start, anchor))
    cursor = first
    while cursor.end < current.start:
        nxt = next_bounds(cursor, perk.period_months, perk.reset_policy, anchor)
        state = advance(
            state,
            _redeemed_in(perk_records, cursor),
            cycle_identifier(perk.period_months, perk.reset_policy, nxt.start, anchor),
        )
        cursor = nxt

    if _redeemed_in(perk_records, current):
        state = replace(state, streak_count=state.streak_count + 1, cold_streak_count=0)
    return replace(state, cycle=current_id)


def is_streak_visible(perk: PerkDefinition) -> bool:
    """Only monthly perks surface their streak to the user."""
    return perk.period_months == VISIBLE_STREAK_PERIOD_MONTHS


def monthly_activity_streak(records: Iterable[RedemptionRecord], now: datetime) -> int:
    """Consecutive months, ending now, with at least one redemption of any perk.

    The current month only extends the streak; an empty current month does
    not break it.
    """
    months = {(r.redemption_instant.year, r.redemption_instant.month) for r in records}
    year, month = now.year, now.month
    streak = 0
    first = True
    while True:
        if (year, month) in months:
            streak += 1
        elif not first:
            break
        first = False
        month -= 1
        if month == 0:
            year, month = year - 1, 12
        if not months or (year, month) < min(months):
            break
    return streak
