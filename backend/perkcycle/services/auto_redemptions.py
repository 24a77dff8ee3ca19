"""Auto-redemption service: perks the user never has to mark by hand."""
import logging

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from perkcycle.models.enrollment import AutoRedemption, CardEnrollment
from perkcycle.services.errors import AlreadyRedeemedError
from perkcycle.services.tracker import PerkTracker

logger = logging.getLogger(__name__)


def get_auto_redemptions(db: Session, user_id: str, enabled_only: bool = True) -> list[AutoRedemption]:
    """Auto-redemptions on the user's active cards."""
    query = db.query(AutoRedemption).join(
        CardEnrollment, CardEnrollment.id == AutoRedemption.card_enrollment_id
    ).filter(
        AutoRedemption.user_id == user_id,
        CardEnrollment.active == 1,
    )
    if enabled_only:
        query = query.filter(AutoRedemption.is_enabled == 1)
    return query.all()


def set_auto_redemption(
    db: Session,
    user_id: str,
    card_enrollment_id: str,
    perk_definition_id: str,
    enabled: bool,
) -> AutoRedemption:
    """Create or toggle the auto-redemption flag for a perk on a card."""
    setting = db.query(AutoRedemption).filter(
        AutoRedemption.card_enrollment_id == card_enrollment_id,
        AutoRedemption.perk_definition_id == perk_definition_id,
    ).first()

    if not setting:
        setting = AutoRedemption(
            user_id=user_id,
            card_enrollment_id=card_enrollment_id,
            perk_definition_id=perk_definition_id,
        )
        db.add(setting)

    setting.is_enabled = 1 if enabled else 0
    db.commit()
    db.refresh(setting)
    return setting


def _auto_redeemed_perks(db: Session, user_id: str) -> list[tuple[str, str]]:
    return [
        (setting.perk_definition_id, setting.card_enrollment_id)
        for setting in get_auto_redemptions(db, user_id)
    ]


async def apply_auto_redemptions(tracker: PerkTracker) -> dict:
    """Record a full redemption for every enabled auto-redeemed perk not yet
    redeemed this cycle.

    Each redemption goes through the tracker, so it waits for any in-flight
    mutation of the same perk. Returns dict with counts of applied, skipped
    and failed perks.
    """
    applied = 0
    skipped = 0
    failed = 0

    perks = await run_in_threadpool(_auto_redeemed_perks, tracker.db, tracker.user_id)
    for perk_id, card_enrollment_id in perks:
        outcome = await tracker.redeem(perk_id, card_enrollment_id=card_enrollment_id, is_auto=True)
        if outcome.ok:
            applied += 1
        elif isinstance(outcome.error, AlreadyRedeemedError):
            skipped += 1
        else:
            logger.warning(f"Auto-redemption of {perk_id} for user {tracker.user_id} failed: {outcome.error.code}")
            failed += 1

    return {"applied": applied, "skipped": skipped, "failed": failed}
