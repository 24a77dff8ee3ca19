from datetime import datetime

import pytest

from factories import enroll, make_card, make_user, perk_by_slug
from perkcycle.config import Settings
from perkcycle.services.auto_redemptions import apply_auto_redemptions, get_auto_redemptions, set_auto_redemption
from perkcycle.services.coordinator import OptimisticUpdateCoordinator
from perkcycle.services.errors import UndoExpiredError
from perkcycle.services.ledger import RedemptionLedger
from perkcycle.services.tracker import PerkTracker

NOW = datetime(2026, 6, 15, 12)


def _tracker(db, user):
    coordinator = OptimisticUpdateCoordinator(clock=lambda: NOW)
    return PerkTracker(db, user.id, coordinator, settings=Settings(), clock=lambda: NOW)


@pytest.mark.asyncio
async def test_apply_tops_up_partials_and_skips_disabled(db):
    user = make_user(db)
    card = make_card(db, perks=[
        {"slug": "dining", "name": "Dining Credit", "value": 50},
        {"slug": "rides", "name": "Ride Credit", "value": 15},
        {"slug": "coffee", "name": "Coffee Credit", "value": 7},
    ])
    enrollment = enroll(db, user, card)
    for slug in ("dining", "rides", "coffee"):
        set_auto_redemption(db, user.id, enrollment.id, perk_by_slug(card, slug).id, enabled=slug != "coffee")
    ledger = RedemptionLedger(db, user.id)
    ledger.record_redemption(perk_by_slug(card, "rides"), amount=5, now=NOW)

    result = await apply_auto_redemptions(_tracker(db, user))

    assert result == {"applied": 2, "skipped": 0, "failed": 0}
    rides = ledger.list_active([perk_by_slug(card, "rides").id], NOW)[0]
    assert rides.status == "redeemed"
    assert rides.is_auto_redemption == 1
    assert ledger.list_active([perk_by_slug(card, "coffee").id], NOW) == []


@pytest.mark.asyncio
async def test_already_redeemed_perks_are_skipped(db):
    user = make_user(db)
    card = make_card(db)
    enrollment = enroll(db, user, card)
    dining = perk_by_slug(card, "dining")
    set_auto_redemption(db, user.id, enrollment.id, dining.id, enabled=True)
    tracker = _tracker(db, user)

    first = await apply_auto_redemptions(tracker)
    second = await apply_auto_redemptions(tracker)

    assert first == {"applied": 1, "skipped": 0, "failed": 0}
    assert second == {"applied": 0, "skipped": 1, "failed": 0}
    assert len(tracker.ledger.list_active([dining.id], NOW)) == 1


@pytest.mark.asyncio
async def test_auto_redemption_supersedes_pending_undo(db):
    user = make_user(db)
    card = make_card(db)
    enrollment = enroll(db, user, card)
    dining = perk_by_slug(card, "dining")
    set_auto_redemption(db, user.id, enrollment.id, dining.id, enabled=True)
    tracker = _tracker(db, user)
    partial = await tracker.redeem(dining.id, amount=20)

    await apply_auto_redemptions(tracker)
    stale = await tracker.undo(partial.undo.token)

    # The old undo would have wiped the auto-redemption
    assert isinstance(stale.error, UndoExpiredError)
    active = tracker.ledger.list_active([dining.id], NOW)
    assert len(active) == 1
    assert active[0].status == "redeemed"
    assert active[0].is_auto_redemption == 1


@pytest.mark.asyncio
async def test_removed_card_stops_auto_redemption(db):
    user = make_user(db)
    card = make_card(db)
    enrollment = enroll(db, user, card)
    set_auto_redemption(db, user.id, enrollment.id, perk_by_slug(card, "dining").id, enabled=True)
    enrollment.active = 0
    db.commit()

    assert get_auto_redemptions(db, user.id) == []
    assert await apply_auto_redemptions(_tracker(db, user)) == {"applied": 0, "skipped": 0, "failed": 0}
