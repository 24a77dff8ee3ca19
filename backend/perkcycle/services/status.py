"""Status aggregation over ledger snapshots.

Everything here is a pure function of already-fetched records. Views and
totals are rebuilt from scratch on every call, never patched incrementally.
"""
from collections import defaultdict
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import NamedTuple

from perkcycle.models.catalog import PerkDefinition
from perkcycle.models.redemption import STATUS_REDEEMED, RedemptionRecord
from perkcycle.schemas.perk import STATUS_AVAILABLE, AggregateTotals, CardRoi, PerkStatusView, RedemptionValues

GROUP_BY_PERIOD = "period_months"
GROUP_BY_CARD = "card"
GROUPINGS = (GROUP_BY_PERIOD, GROUP_BY_CARD)


class EnrolledPerk(NamedTuple):
    """A catalog perk as held through one card enrollment."""

    perk: PerkDefinition
    card_enrollment_id: str


def active_record_for(
    perk_definition_id: str,
    records: Iterable[RedemptionRecord],
    now: datetime,
) -> RedemptionRecord | None:
    """The perk's record whose cycle is still open, latest first."""
    active = [
        r for r in records
        if r.perk_definition_id == perk_definition_id and r.cycle_reset_instant > now
    ]
    if not active:
        return None
    return max(active, key=lambda r: r.redemption_instant)


def status_for(
    perk: PerkDefinition,
    records: Iterable[RedemptionRecord],
    now: datetime,
) -> tuple[str, float]:
    """Return (status, remaining_value) for ``perk`` at ``now``."""
    record = active_record_for(perk.id, records, now)
    if record is None:
        return STATUS_AVAILABLE, perk.value
    return record.status, record.remaining_value


def build_view(
    perk: PerkDefinition,
    records: Iterable[RedemptionRecord],
    now: datetime,
    card_enrollment_id: str | None = None,
    streak_count: int = 0,
    cold_streak_count: int = 0,
    cycle_end: datetime | None = None,
) -> PerkStatusView:
    status, remaining = status_for(perk, records, now)
    return PerkStatusView(
        perk_definition_id=perk.id,
        card_enrollment_id=card_enrollment_id,
        name=perk.name,
        value=perk.value,
        period_months=perk.period_months,
        status=status,
        remaining_value=remaining,
        streak_count=streak_count,
        cold_streak_count=cold_streak_count,
        cycle_end=cycle_end,
    )


def _group_key(enrolled: EnrolledPerk, group_by: str) -> int | str:
    if group_by == GROUP_BY_PERIOD:
        return enrolled.perk.period_months
    if group_by == GROUP_BY_CARD:
        return enrolled.card_enrollment_id
    raise ValueError(f"Unknown grouping: {group_by}")


def aggregate(
    perks: Iterable[EnrolledPerk],
    records: Iterable[RedemptionRecord],
    now: datetime,
    group_by: str = GROUP_BY_PERIOD,
) -> dict[int | str, AggregateTotals]:
    """Redeemed vs. possible value and counts per group.

    Possible value and total count cover every perk in the group. Partial
    redemptions add their redeemed value but only full redemptions add to
    the redeemed count.
    """
    records = list(records)
    totals: dict[int | str, AggregateTotals] = {}

    for enrolled in perks:
        key = _group_key(enrolled, group_by)
        group = totals.setdefault(key, AggregateTotals())
        group.possible_value += enrolled.perk.value
        group.total_count += 1

        record = active_record_for(enrolled.perk.id, records, now)
        if record is None:
            continue
        group.redeemed_value += record.value_redeemed
        if record.status == STATUS_REDEEMED:
            group.redeemed_count += 1
        else:
            group.partially_redeemed_count += 1

    return totals


def cumulative_saved_per_card(records: Iterable[RedemptionRecord]) -> dict[str, float]:
    """Lifetime value redeemed per card enrollment, active and historical."""
    saved: dict[str, float] = defaultdict(float)
    for record in records:
        saved[record.card_enrollment_id] += record.value_redeemed
    return dict(saved)


def missed_value(perk: PerkDefinition, cycle_records: Iterable[RedemptionRecord]) -> float:
    """Value of ``perk`` left unredeemed in a closed cycle."""
    redeemed = sum(r.value_redeemed for r in cycle_records)
    return max(0.0, perk.value - redeemed)


def redemption_values(
    perks: Iterable[EnrolledPerk],
    records: Iterable[RedemptionRecord],
    now: datetime,
    closed_cycle_records: Mapping[str, list[RedemptionRecord]] | None = None,
) -> RedemptionValues:
    """Split current-cycle value by status and add up last cycle's missed value.

    ``closed_cycle_records`` maps perk ids to the records of each perk's last
    closed cycle. Perks missing from it were not held for that whole cycle
    and miss nothing.
    """
    records = list(records)
    closed_cycle_records = closed_cycle_records or {}
    values = RedemptionValues()

    for enrolled in perks:
        perk = enrolled.perk
        values.potential_value += perk.value
        record = active_record_for(perk.id, records, now)
        if record is None:
            values.available_value += perk.value
        elif record.status == STATUS_REDEEMED:
            values.redeemed_value += record.value_redeemed
        else:
            values.partial_value += record.value_redeemed

        if perk.id in closed_cycle_records:
            values.missed_value += missed_value(perk, closed_cycle_records[perk.id])

    values.total_redeemed_value = values.redeemed_value + values.partial_value
    return values


def card_roi(
    cards: Iterable[tuple[str, str, float]],
    records: Iterable[RedemptionRecord],
) -> list[CardRoi]:
    """Redeemed value against annual fee per card, best return first.

    ``cards`` holds (card_enrollment_id, card_name, annual_fee) triples and
    ``records`` the redemptions of the period being measured. Cards without
    a fee are always covered and sort last.
    """
    redeemed = cumulative_saved_per_card(records)
    rois = []
    for card_enrollment_id, card_name, annual_fee in cards:
        total = redeemed.get(card_enrollment_id, 0.0)
        percentage = total / annual_fee * 100 if annual_fee > 0 else None
        rois.append(CardRoi(
            card_enrollment_id=card_enrollment_id,
            card_name=card_name,
            annual_fee=annual_fee,
            total_redeemed=total,
            roi_percentage=percentage,
            fee_covered=percentage is None or percentage >= 100,
        ))
    return sorted(rois, key=lambda roi: (roi.roi_percentage is None, -(roi.roi_percentage or 0.0)))
