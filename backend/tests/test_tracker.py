import asyncio
from datetime import datetime

import pytest

from factories import enroll, make_card, make_record, make_user, perk_by_slug
from perkcycle.config import Settings
from perkcycle.models.user import User
from perkcycle.schemas.notification import ReminderPreferences
from perkcycle.services.coordinator import OptimisticUpdateCoordinator
from perkcycle.services.errors import (
    AlreadyRedeemedError,
    CardLinkageNotFoundError,
    PerkNotFoundError,
    UndoExpiredError,
)
from perkcycle.services.ledger import RedemptionLedger
from perkcycle.services.tracker import PerkTracker

NOW = datetime(2026, 6, 15, 9)

PERKS = [
    {"slug": "dining", "name": "Dining Credit", "value": 50, "period_months": 1},
    {"slug": "rides", "name": "Ride Credit", "value": 15, "period_months": 1},
    {"slug": "shopping", "name": "Shopping Credit", "value": 100, "period_months": 6},
]


@pytest.fixture
def setup(db):
    user = make_user(db)
    card = make_card(db, perks=PERKS)
    enrollment = enroll(db, user, card, added_at=datetime(2026, 5, 1))
    coordinator = OptimisticUpdateCoordinator(clock=lambda: NOW)
    tracker = PerkTracker(db, user.id, coordinator, settings=Settings(), clock=lambda: NOW)
    return tracker, card, enrollment


@pytest.mark.asyncio
async def test_partial_top_up_and_undo(setup):
    tracker, card, _ = setup
    perk = perk_by_slug(card, "dining")

    partial = await tracker.redeem(perk.id, amount=20)
    assert partial.ok
    assert partial.view.status == "partially_redeemed"
    assert partial.view.remaining_value == 30

    full = await tracker.redeem(perk.id, amount=30)
    assert full.view.status == "redeemed"
    assert full.view.remaining_value == 0
    active = tracker.ledger.list_active([perk.id], NOW)
    assert len(active) == 1
    assert active[0].value_redeemed == 50

    undone = await tracker.undo(full.undo.token)
    assert undone.ok
    assert undone.view.status == "available"
    assert undone.view.remaining_value == 50
    assert tracker.ledger.list_active([perk.id], NOW) == []
    assert tracker.ledger.list_all([perk.id]) == []


@pytest.mark.asyncio
async def test_undo_full_redemption_leaves_perk_available(setup):
    tracker, card, _ = setup
    perk = perk_by_slug(card, "dining")

    outcome = await tracker.redeem(perk.id)
    undone = await tracker.undo(outcome.undo.token)

    assert undone.view.status == "available"
    assert undone.view.remaining_value == 50
    assert tracker.ledger.list_active([perk.id], NOW) == []
    assert tracker.get_status(perk.id).status == "available"


@pytest.mark.asyncio
async def test_second_redemption_reports_error_and_keeps_view(setup):
    tracker, card, _ = setup
    perk = perk_by_slug(card, "dining")
    await tracker.redeem(perk.id)

    outcome = await tracker.redeem(perk.id)

    assert isinstance(outcome.error, AlreadyRedeemedError)
    assert outcome.view.status == "redeemed"
    assert tracker.get_status(perk.id).status == "redeemed"


@pytest.mark.asyncio
async def test_concurrent_redemptions_settle_on_ledger_state(setup, session_factory):
    tracker, card, _ = setup
    perk = perk_by_slug(card, "dining")
    other_session = session_factory()
    other = PerkTracker(other_session, tracker.user_id, tracker.coordinator, settings=Settings(), clock=lambda: NOW)

    try:
        first, second = await asyncio.gather(tracker.redeem(perk.id), other.redeem(perk.id))
    finally:
        other_session.close()

    assert first.ok
    assert first.view.status == "redeemed"
    assert isinstance(second.error, AlreadyRedeemedError)
    assert second.view.status == "redeemed"
    assert [r.status for r in tracker.ledger.list_active([perk.id], NOW)] == ["redeemed"]
    assert tracker.get_status(perk.id).status == "redeemed"


@pytest.mark.asyncio
async def test_mark_available_and_undo(setup):
    tracker, card, _ = setup
    perk = perk_by_slug(card, "dining")
    await tracker.redeem(perk.id, amount=20)

    cleared = await tracker.mark_available(perk.id)
    assert cleared.view.status == "available"
    assert tracker.ledger.list_active([perk.id], NOW) == []

    restored = await tracker.undo(cleared.undo.token)
    assert restored.view.status == "partially_redeemed"
    assert restored.view.remaining_value == 30


@pytest.mark.asyncio
async def test_unknown_perk_and_missing_enrollment(setup, db):
    tracker, _, _ = setup
    other_card = make_card(db, slug="platinum", name="Platinum Card")

    missing = await tracker.redeem("no-such-perk")
    unlinked = await tracker.redeem(perk_by_slug(other_card, "dining").id)

    assert isinstance(missing.error, PerkNotFoundError)
    assert isinstance(unlinked.error, CardLinkageNotFoundError)


@pytest.mark.asyncio
async def test_undo_of_another_users_token_is_refused(setup, db):
    tracker, card, _ = setup
    perk = perk_by_slug(card, "dining")
    outcome = await tracker.redeem(perk.id)

    stranger = make_user(db, "stranger")
    other = PerkTracker(db, stranger.id, tracker.coordinator, settings=Settings(), clock=lambda: NOW)
    refused = await other.undo(outcome.undo.token)

    assert isinstance(refused.error, UndoExpiredError)
    assert tracker.coordinator.pending_undo(outcome.undo.token) is not None


def test_status_includes_streaks(setup, db):
    tracker, card, enrollment = setup
    perk = perk_by_slug(card, "dining")
    user = db.get(User, tracker.user_id)
    make_record(db, user, perk, enrollment, datetime(2026, 5, 10), datetime(2026, 5, 31, 23, 59))

    statuses = {v.name: v for v in tracker.list_statuses()}

    assert statuses["Dining Credit"].streak_count == 1
    assert statuses["Dining Credit"].streak_visible
    assert statuses["Ride Credit"].cold_streak_count == 1
    assert not statuses["Shopping Credit"].streak_visible


@pytest.mark.asyncio
async def test_aggregates_savings_and_history(setup):
    tracker, card, enrollment = setup
    dining = perk_by_slug(card, "dining")
    await tracker.redeem(dining.id)
    await tracker.redeem(perk_by_slug(card, "rides").id, amount=5)

    totals = tracker.get_aggregates()

    assert totals[1].redeemed_value == 55
    assert totals[1].redeemed_count == 1
    assert totals[1].partially_redeemed_count == 1
    assert totals[6].possible_value == 100
    assert tracker.get_savings() == {enrollment.id: 55}
    assert [r.status for r in tracker.history(dining.id)] == ["redeemed"]
    assert tracker.get_activity_streak() == 1


def test_reminders_for_unredeemed_perks(setup):
    tracker, card, _ = setup
    RedemptionLedger(tracker.db, tracker.user_id).record_redemption(perk_by_slug(card, "rides"), now=NOW)

    reminders = tracker.get_reminders()

    monthly = [r for r in reminders if r.period_months == 1]
    assert [r.days_before for r in monthly] == [7, 3, 1]
    assert monthly[0].title == "Dining Credit expires in 7 days"
    semi_annual = [r for r in reminders if r.period_months == 6]
    assert [r.days_before for r in semi_annual] == [14]


def test_reminder_preferences_disable_a_period(setup):
    tracker, _, _ = setup

    reminders = tracker.get_reminders(preferences=ReminderPreferences(monthly_enabled=False, semi_annual_days=[5]))

    assert [(r.period_months, r.days_before) for r in reminders] == [(6, 5)]


def test_redemption_values_count_last_cycle_misses(setup, db):
    tracker, card, enrollment = setup
    dining = perk_by_slug(card, "dining")
    user = db.get(User, tracker.user_id)
    make_record(db, user, dining, enrollment, datetime(2026, 5, 20), datetime(2026, 5, 31, 23, 59, 59))
    RedemptionLedger(db, user.id).record_redemption(dining, amount=20, now=NOW)

    values = tracker.get_redemption_values()

    assert values.partial_value == 20
    assert values.available_value == 115
    assert values.potential_value == 165
    # Rides went unused in May; shopping's last closed cycle predates the card
    assert values.missed_value == 15


def test_card_roi_counts_only_the_requested_year(setup, db):
    tracker, card, enrollment = setup
    dining = perk_by_slug(card, "dining")
    user = db.get(User, tracker.user_id)
    make_record(db, user, dining, enrollment, datetime(2025, 12, 5), datetime(2025, 12, 31, 23, 59, 59))
    make_record(db, user, dining, enrollment, datetime(2026, 5, 20), datetime(2026, 5, 31, 23, 59, 59))
    make_record(db, user, dining, enrollment, datetime(2026, 6, 2), datetime(2026, 6, 30, 23, 59, 59), value_redeemed=20)

    [roi] = tracker.get_card_roi()

    assert roi.card_name == "Gold Card"
    assert roi.annual_fee == 250
    assert roi.total_redeemed == 70
    assert roi.roi_percentage == pytest.approx(28)
    assert not roi.fee_covered
    assert tracker.get_card_roi(2025)[0].total_redeemed == 50
