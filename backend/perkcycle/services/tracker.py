"""Perk tracker: the entry point presentation code uses for perks."""
import logging
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from perkcycle.config import Settings, get_settings
from perkcycle.models.catalog import RESET_CALENDAR, CardProduct, PerkDefinition
from perkcycle.models.enrollment import CardEnrollment
from perkcycle.models.redemption import STATUS_PARTIALLY_REDEEMED, STATUS_REDEEMED, RedemptionRecord
from perkcycle.schemas.notification import ReminderPreferences
from perkcycle.schemas.perk import STATUS_AVAILABLE, AggregateTotals, CardRoi, PerkStatusView, RedemptionValues
from perkcycle.services.coordinator import MutationOutcome, MutationPlan, OptimisticUpdateCoordinator
from perkcycle.services.cycles import bounds_for, parse_anchor, previous_bounds
from perkcycle.services.errors import PerkNotFoundError, UndoExpiredError
from perkcycle.services.ledger import RedemptionLedger, RedemptionSnapshot
from perkcycle.services.reminders import ScheduledReminder, available_perks_for, schedule_for
from perkcycle.services.status import (
    GROUP_BY_PERIOD,
    EnrolledPerk,
    aggregate,
    build_view,
    card_roi,
    cumulative_saved_per_card,
    redemption_values,
)
from perkcycle.services.streaks import is_streak_visible, monthly_activity_streak, streak_for

logger = logging.getLogger(__name__)


def _parse_instant(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


class PerkTracker:
    """Status, redemption and reminder operations for one user."""

    def __init__(
        self,
        db: Session,
        user_id: str,
        coordinator: OptimisticUpdateCoordinator,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.user_id = user_id
        self.coordinator = coordinator
        self.settings = settings or get_settings()
        self.clock = clock
        self.ledger = RedemptionLedger(db, user_id)

    # Lookups

    def enrolled_perks(self) -> list[EnrolledPerk]:
        """Every perk on every active card of the user."""
        rows = self.db.query(PerkDefinition, CardEnrollment).join(
            CardEnrollment, CardEnrollment.card_product_id == PerkDefinition.card_product_id
        ).filter(
            CardEnrollment.user_id == self.user_id,
            CardEnrollment.active == 1,
        ).order_by(PerkDefinition.period_months, PerkDefinition.name).all()
        return [EnrolledPerk(perk, enrollment.id) for perk, enrollment in rows]

    def _perk(self, perk_id: str) -> PerkDefinition:
        perk = self.db.get(PerkDefinition, perk_id)
        if perk is None:
            raise PerkNotFoundError(perk_definition_id=perk_id)
        return perk

    def _enrolled(self, perk_id: str, card_enrollment_id: str | None = None) -> tuple[EnrolledPerk, CardEnrollment]:
        perk = self._perk(perk_id)
        enrollment = self.ledger.resolve_enrollment(perk, card_enrollment_id)
        return EnrolledPerk(perk, enrollment.id), enrollment

    def _key(self, perk_id: str) -> tuple[str, str]:
        return self.user_id, perk_id

    # Views

    def _view(self, enrolled: EnrolledPerk, enrollment: CardEnrollment, now: datetime) -> PerkStatusView:
        perk = enrolled.perk
        records = self.ledger.list_all([perk.id])
        anchor = parse_anchor(enrollment.anniversary)
        streak = streak_for(perk, records, now, anchor=anchor, since=_parse_instant(enrollment.added_at))
        view = build_view(
            perk,
            records,
            now,
            card_enrollment_id=enrolled.card_enrollment_id,
            streak_count=streak.streak_count,
            cold_streak_count=streak.cold_streak_count,
            cycle_end=bounds_for(perk.period_months, perk.reset_policy, now, anchor).end,
        )
        view.streak_visible = is_streak_visible(perk)
        return view

    def get_status(self, perk_id: str, card_enrollment_id: str | None = None) -> PerkStatusView:
        """Current view of one perk; an in-flight mutation's view wins."""
        enrolled, enrollment = self._enrolled(perk_id, card_enrollment_id)
        key = self._key(perk_id)
        return self.coordinator.current(key, self._view(enrolled, enrollment, self.clock()))

    def _active_enrollments(self) -> dict[str, CardEnrollment]:
        return {
            e.id: e for e in self.db.query(CardEnrollment).filter(
                CardEnrollment.user_id == self.user_id,
                CardEnrollment.active == 1,
            )
        }

    def list_statuses(self) -> list[PerkStatusView]:
        now = self.clock()
        enrollments = self._active_enrollments()
        views = []
        for enrolled in self.enrolled_perks():
            key = self._key(enrolled.perk.id)
            views.append(self.coordinator.current(key, self._view(enrolled, enrollments[enrolled.card_enrollment_id], now)))
        return views

    def history(self, perk_id: str) -> list[RedemptionRecord]:
        self._perk(perk_id)
        return list(reversed(self.ledger.list_all([perk_id])))

    # Mutations

    def _write_and_view(self, write: Callable[[datetime], object], perk_id: str, card_enrollment_id: str) -> PerkStatusView:
        now = self.clock()
        write(now)
        enrolled, enrollment = self._enrolled(perk_id, card_enrollment_id)
        return self._view(enrolled, enrollment, now)

    def _revert_and_view(self, perk_id: str, card_enrollment_id: str, snapshot: RedemptionSnapshot | None) -> PerkStatusView:
        return self._write_and_view(
            lambda now: self.ledger.revert_to(perk_id, snapshot, now),
            perk_id,
            card_enrollment_id,
        )

    def _fresh(self, perk_id: str, card_enrollment_id: str | None) -> tuple[EnrolledPerk, CardEnrollment, PerkStatusView]:
        # Another session may have written while this mutation waited for its lock
        self.db.expire_all()
        enrolled, enrollment = self._enrolled(perk_id, card_enrollment_id)
        return enrolled, enrollment, self._view(enrolled, enrollment, self.clock())

    def _plan_redeem(
        self,
        perk_id: str,
        amount: float | None,
        card_enrollment_id: str | None,
        parent_record_id: str | None,
        provider: str | None,
        is_auto: bool,
    ) -> MutationPlan:
        enrolled, enrollment, previous = self._fresh(perk_id, card_enrollment_id)
        perk = enrolled.perk

        optimistic = previous.model_copy()
        if previous.status != STATUS_REDEEMED:
            already = perk.value - previous.remaining_value
            total = already + (amount if amount is not None else previous.remaining_value)
            optimistic.status = STATUS_REDEEMED if total >= perk.value else STATUS_PARTIALLY_REDEEMED
            optimistic.remaining_value = max(0.0, perk.value - total)

        async def operation() -> PerkStatusView:
            return await run_in_threadpool(
                self._write_and_view,
                lambda at: self.ledger.record_redemption(
                    perk,
                    enrollment.id,
                    amount=amount,
                    parent_record_id=parent_record_id,
                    now=at,
                    is_auto=is_auto,
                    provider=provider,
                ),
                perk_id,
                enrollment.id,
            )

        async def inverse() -> PerkStatusView:
            # Undo clears the cycle, including a partial that this call topped up
            return await run_in_threadpool(
                self._write_and_view,
                lambda at: self.ledger.delete_active_redemption(perk_id, at),
                perk_id,
                enrollment.id,
            )

        return MutationPlan(previous, optimistic, operation, inverse)

    def _plan_mark_available(self, perk_id: str, card_enrollment_id: str | None) -> MutationPlan:
        enrolled, enrollment, previous = self._fresh(perk_id, card_enrollment_id)
        snapshot = self.ledger.active_snapshot(perk_id, self.clock())
        optimistic = previous.model_copy(update={
            "status": STATUS_AVAILABLE,
            "remaining_value": enrolled.perk.value,
        })

        async def operation() -> PerkStatusView:
            return await run_in_threadpool(
                self._write_and_view,
                lambda at: self.ledger.delete_active_redemption(perk_id, at),
                perk_id,
                enrollment.id,
            )

        async def inverse() -> PerkStatusView:
            return await run_in_threadpool(self._revert_and_view, perk_id, enrollment.id, snapshot)

        return MutationPlan(previous, optimistic, operation, inverse)

    async def redeem(
        self,
        perk_id: str,
        amount: float | None = None,
        card_enrollment_id: str | None = None,
        parent_record_id: str | None = None,
        provider: str | None = None,
        is_auto: bool = False,
    ) -> MutationOutcome:
        """Redeem all (``amount=None``) or part of a perk."""

        async def plan() -> MutationPlan:
            return await run_in_threadpool(
                self._plan_redeem, perk_id, amount, card_enrollment_id, parent_record_id, provider, is_auto
            )

        outcome = await self.coordinator.mutate(self._key(perk_id), plan)
        if outcome.ok:
            logger.info(f"User {self.user_id} redeemed perk {perk_id}: {outcome.view.status}")
        return outcome

    async def mark_available(self, perk_id: str, card_enrollment_id: str | None = None) -> MutationOutcome:
        """Clear the perk's redemption for the current cycle."""

        async def plan() -> MutationPlan:
            return await run_in_threadpool(self._plan_mark_available, perk_id, card_enrollment_id)

        return await self.coordinator.mutate(self._key(perk_id), plan)

    async def undo(self, token: str) -> MutationOutcome:
        action = self.coordinator.pending_undo(token)
        if action is not None and action.key[0] != self.user_id:
            return MutationOutcome(view=None, error=UndoExpiredError(token=token))
        return await self.coordinator.undo(token)

    # Aggregates

    def get_aggregates(self, group_by: str = GROUP_BY_PERIOD) -> dict[int | str, AggregateTotals]:
        perks = self.enrolled_perks()
        records = self.ledger.list_active([e.perk.id for e in perks], self.clock())
        return aggregate(perks, records, self.clock(), group_by)

    def get_savings(self) -> dict[str, float]:
        return cumulative_saved_per_card(self.ledger.list_all())

    def get_activity_streak(self) -> int:
        return monthly_activity_streak(self.ledger.list_all(), self.clock())

    # Insights

    def get_redemption_values(self) -> RedemptionValues:
        """This cycle's value by status, plus what each perk missed last cycle."""
        now = self.clock()
        perks = self.enrolled_perks()
        enrollments = self._active_enrollments()

        closed_cycle_records = {}
        for enrolled in perks:
            perk = enrolled.perk
            enrollment = enrollments[enrolled.card_enrollment_id]
            anchor = parse_anchor(enrollment.anniversary)
            window = previous_bounds(
                bounds_for(perk.period_months, perk.reset_policy, now, anchor),
                perk.period_months,
                perk.reset_policy,
                anchor,
            )
            added_at = _parse_instant(enrollment.added_at)
            if added_at is not None and added_at > window.start:
                continue
            closed_cycle_records[perk.id] = self.ledger.list_for_window([perk.id], window.start, window.end)

        records = self.ledger.list_active([e.perk.id for e in perks], now)
        return redemption_values(perks, records, now, closed_cycle_records)

    def get_card_roi(self, year: int | None = None) -> list[CardRoi]:
        """Value redeemed in ``year`` against each active card's annual fee."""
        year = year or self.clock().year
        rows = self.db.query(CardEnrollment, CardProduct).join(
            CardProduct, CardProduct.id == CardEnrollment.card_product_id
        ).filter(
            CardEnrollment.user_id == self.user_id,
            CardEnrollment.active == 1,
        ).all()
        records = self.ledger.list_for_window(
            None,
            datetime(year, 1, 1),
            datetime(year, 12, 31, 23, 59, 59, 999999),
        )
        cards = [(e.id, e.nickname or p.name, float(p.annual_fee or 0)) for e, p in rows]
        return card_roi(cards, records)

    # Reminders

    def get_reminders(
        self,
        now: datetime | None = None,
        preferences: ReminderPreferences | None = None,
    ) -> list[ScheduledReminder]:
        """Reminders for every period that still has perks to use."""
        now = now or self.clock()
        preferences = preferences or ReminderPreferences()
        reminder_time = preferences.reminder_time or self.settings.reminder_time

        perks = self.enrolled_perks()
        enrollments = {
            e.id: e for e in self.db.query(CardEnrollment).filter(CardEnrollment.user_id == self.user_id)
        }
        card_names = dict(
            self.db.query(CardEnrollment.id, CardProduct.name).join(
                CardProduct, CardProduct.id == CardEnrollment.card_product_id
            ).filter(CardEnrollment.user_id == self.user_id).all()
        )
        records = self.ledger.list_active([e.perk.id for e in perks], now)

        groups = defaultdict(list)
        for enrolled in perks:
            perk = enrolled.perk
            anchor = parse_anchor(enrollments[enrolled.card_enrollment_id].anniversary) if perk.reset_policy != RESET_CALENDAR else None
            groups[(perk.period_months, perk.reset_policy, anchor)].append(
                (perk, card_names.get(enrolled.card_enrollment_id))
            )

        reminders = []
        for (period_months, reset_policy, anchor), group in sorted(groups.items(), key=lambda item: (item[0][0], item[0][1])):
            if not preferences.enabled_for(period_months):
                continue
            offsets = preferences.days_for(period_months) or self.settings.reminder_days_for(period_months)
            reminders.extend(schedule_for(
                period_months,
                available_perks_for(group, records, now),
                now,
                offsets=offsets,
                reminder_time=reminder_time,
                reset_policy=reset_policy,
                anchor=anchor,
            ))
        return sorted(reminders, key=lambda r: r.fire_at)
