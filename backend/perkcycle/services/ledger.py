"""Redemption ledger: the single source of truth for perk usage.

Every write re-reads the perk's active records first so the per-cycle
uniqueness rule (at most one active record per user and perk) holds without a
storage-level constraint. The read and the write share one transaction; a
duplicate that shows up after commit is reported as a storage fault.
"""
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from perkcycle.models.catalog import PerkDefinition
from perkcycle.models.enrollment import CardEnrollment
from perkcycle.models.redemption import (
    STATUS_PARTIALLY_REDEEMED,
    STATUS_REDEEMED,
    RedemptionRecord,
)
from perkcycle.services.cycles import bounds_for, parse_anchor
from perkcycle.services.errors import (
    AlreadyRedeemedError,
    CardLinkageNotFoundError,
    DuplicateActiveRecordError,
    InsufficientRemainingValueError,
    InvalidAmountError,
    ParentAlreadyRedeemedError,
    ParentRecordNotFoundError,
    StorageError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedemptionSnapshot:
    """Detached copy of an active record, used to put it back on undo."""

    perk_definition_id: str
    card_enrollment_id: str
    redemption_instant: datetime
    cycle_reset_instant: datetime
    status: str
    value_redeemed: float
    total_value: float
    parent_record_id: str | None = None
    is_auto_redemption: bool = False
    provider: str | None = None

    @classmethod
    def from_record(cls, record: RedemptionRecord) -> "RedemptionSnapshot":
        return cls(
            perk_definition_id=record.perk_definition_id,
            card_enrollment_id=record.card_enrollment_id,
            redemption_instant=record.redemption_instant,
            cycle_reset_instant=record.cycle_reset_instant,
            status=record.status,
            value_redeemed=record.value_redeemed,
            total_value=record.total_value,
            parent_record_id=record.parent_record_id,
            is_auto_redemption=bool(record.is_auto_redemption),
            provider=record.provider,
        )


def _status_for_amount(value_redeemed: float, total_value: float) -> str:
    return STATUS_REDEEMED if value_redeemed >= total_value else STATUS_PARTIALLY_REDEEMED


class RedemptionLedger:
    """Ledger operations for one user."""

    def __init__(self, db: Session, user_id: str):
        self.db = db
        self.user_id = user_id

    # Reads

    def _active_query(self, perk_definition_ids: Iterable[str], as_of: datetime):
        return self.db.query(RedemptionRecord).filter(
            RedemptionRecord.user_id == self.user_id,
            RedemptionRecord.perk_definition_id.in_(list(perk_definition_ids)),
            RedemptionRecord.cycle_reset_instant > as_of,
        )

    def list_active(self, perk_definition_ids: Iterable[str], as_of: datetime | None = None) -> list[RedemptionRecord]:
        """Records whose cycle is still open at ``as_of``."""
        as_of = as_of or datetime.now()
        return self._active_query(perk_definition_ids, as_of).order_by(
            RedemptionRecord.redemption_instant
        ).all()

    def list_for_window(
        self,
        perk_definition_ids: Iterable[str] | None,
        start: datetime,
        end: datetime,
    ) -> list[RedemptionRecord]:
        """Records redeemed between ``start`` and ``end`` inclusive.

        ``perk_definition_ids=None`` covers every perk of the user.
        """
        query = self.db.query(RedemptionRecord).filter(
            RedemptionRecord.user_id == self.user_id,
            RedemptionRecord.redemption_instant >= start,
            RedemptionRecord.redemption_instant <= end,
        )
        if perk_definition_ids is not None:
            query = query.filter(RedemptionRecord.perk_definition_id.in_(list(perk_definition_ids)))
        return query.order_by(RedemptionRecord.redemption_instant).all()

    def list_all(self, perk_definition_ids: Iterable[str] | None = None) -> list[RedemptionRecord]:
        """Every record for the user, active and historical."""
        query = self.db.query(RedemptionRecord).filter(RedemptionRecord.user_id == self.user_id)
        if perk_definition_ids is not None:
            query = query.filter(RedemptionRecord.perk_definition_id.in_(list(perk_definition_ids)))
        return query.order_by(RedemptionRecord.redemption_instant).all()

    def active_snapshot(self, perk_definition_id: str, now: datetime | None = None) -> RedemptionSnapshot | None:
        """Snapshot of the perk's active record, if any."""
        active = self._read_single_active(perk_definition_id, now or datetime.now())
        return RedemptionSnapshot.from_record(active) if active else None

    def _read_single_active(self, perk_definition_id: str, now: datetime) -> RedemptionRecord | None:
        try:
            active = self._active_query([perk_definition_id], now).all()
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        if len(active) > 1:
            logger.error(f"Found {len(active)} active redemptions for user {self.user_id} perk {perk_definition_id}")
            raise DuplicateActiveRecordError(perk_definition_id=perk_definition_id)
        return active[0] if active else None

    # Card linkage

    def resolve_enrollment(self, perk: PerkDefinition, card_enrollment_id: str | None = None) -> CardEnrollment:
        """Find the active enrollment that owns ``perk`` for this user."""
        query = self.db.query(CardEnrollment).filter(
            CardEnrollment.user_id == self.user_id,
            CardEnrollment.card_product_id == perk.card_product_id,
            CardEnrollment.active == 1,
        )
        if card_enrollment_id:
            query = query.filter(CardEnrollment.id == card_enrollment_id)
        enrollment = query.first()
        if enrollment is None:
            logger.error(f"No card enrollment for user {self.user_id} perk {perk.id} (enrollment={card_enrollment_id})")
            raise CardLinkageNotFoundError(perk_definition_id=perk.id, card_enrollment_id=card_enrollment_id)
        return enrollment

    # Writes

    def record_redemption(
        self,
        perk: PerkDefinition,
        card_enrollment_id: str | None = None,
        amount: float | None = None,
        parent_record_id: str | None = None,
        now: datetime | None = None,
        is_auto: bool = False,
        provider: str | None = None,
    ) -> RedemptionRecord:
        """Record a (partial) redemption of ``perk`` in its current cycle.

        ``amount=None`` redeems whatever is left of the perk. Topping up an
        active partial record replaces it with a single new record; once the
        cumulative amount reaches the perk value the result is ``redeemed``
        with the value capped at the perk value.
        """
        now = now or datetime.now()
        if amount is not None and amount <= 0:
            raise InvalidAmountError(amount=amount)

        enrollment = self.resolve_enrollment(perk, card_enrollment_id)
        existing = self._read_single_active(perk.id, now)

        if existing and existing.status == STATUS_REDEEMED:
            logger.warning(f"Perk {perk.id} already redeemed this cycle for user {self.user_id}")
            raise AlreadyRedeemedError(perk_definition_id=perk.id)

        if amount is None:
            amount = existing.remaining_value if existing else perk.value

        if parent_record_id and (existing is None or parent_record_id != existing.id):
            self._check_parent(parent_record_id, amount)

        if existing:
            # Top-up of the in-progress partial redemption
            total = existing.value_redeemed + amount
            value_redeemed = min(total, existing.total_value)
            record = RedemptionRecord(
                user_id=self.user_id,
                perk_definition_id=perk.id,
                card_enrollment_id=existing.card_enrollment_id,
                redemption_instant=now,
                cycle_reset_instant=existing.cycle_reset_instant,
                status=_status_for_amount(total, existing.total_value),
                value_redeemed=value_redeemed,
                total_value=existing.total_value,
                remaining_value=max(0.0, existing.total_value - value_redeemed),
                parent_record_id=existing.id,
                is_auto_redemption=1 if is_auto else 0,
                provider=provider or existing.provider,
            )
            replaced = existing
        else:
            bounds = bounds_for(
                perk.period_months,
                perk.reset_policy,
                now,
                anchor=parse_anchor(enrollment.anniversary),
            )
            value_redeemed = min(amount, perk.value)
            record = RedemptionRecord(
                user_id=self.user_id,
                perk_definition_id=perk.id,
                card_enrollment_id=enrollment.id,
                redemption_instant=now,
                cycle_reset_instant=bounds.end,
                status=_status_for_amount(amount, perk.value),
                value_redeemed=value_redeemed,
                total_value=perk.value,
                remaining_value=max(0.0, perk.value - amount),
                parent_record_id=parent_record_id,
                is_auto_redemption=1 if is_auto else 0,
                provider=provider,
            )
            replaced = None

        self._write(record, replaced)
        self._verify_unique(record, now)
        logger.info(
            f"Recorded {record.status} redemption of perk {perk.id} for user {self.user_id}: "
            f"{record.value_redeemed:.2f} of {record.total_value:.2f}"
        )
        return record

    def _check_parent(self, parent_record_id: str, amount: float) -> RedemptionRecord:
        parent = self.db.query(RedemptionRecord).filter(
            RedemptionRecord.id == parent_record_id,
            RedemptionRecord.user_id == self.user_id,
        ).first()
        if parent is None:
            raise ParentRecordNotFoundError(parent_record_id=parent_record_id)
        if parent.status == STATUS_REDEEMED:
            raise ParentAlreadyRedeemedError(parent_record_id=parent_record_id)
        if parent.remaining_value < amount:
            raise InsufficientRemainingValueError(
                parent_record_id=parent_record_id,
                remaining_value=parent.remaining_value,
                amount=amount,
            )
        return parent

    def _write(self, record: RedemptionRecord, replaced: RedemptionRecord | None = None) -> None:
        try:
            if replaced is not None:
                self.db.delete(replaced)
            self.db.add(record)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(f"Failed to write redemption for user {self.user_id}: {exc}")
            raise StorageError(str(exc)) from exc

    def _verify_unique(self, record: RedemptionRecord, now: datetime) -> None:
        try:
            active_ids = [
                r.id for r in self._active_query([record.perk_definition_id], now).all()
            ]
        except SQLAlchemyError as exc:
            raise StorageError(str(exc)) from exc
        if len(active_ids) <= 1:
            return

        logger.error(f"Concurrent redemption detected for user {self.user_id} perk {record.perk_definition_id}; discarding {record.id}")
        try:
            self.db.delete(record)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StorageError(str(exc)) from exc
        raise DuplicateActiveRecordError(perk_definition_id=record.perk_definition_id)

    def delete_active_redemption(self, perk_definition_id: str, now: datetime | None = None) -> int:
        """Delete the perk's active records. Historical records are untouched."""
        now = now or datetime.now()
        try:
            active = self._active_query([perk_definition_id], now).all()
            for record in active:
                self.db.delete(record)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(f"Failed to delete redemption for user {self.user_id}: {exc}")
            raise StorageError(str(exc)) from exc

        if active:
            logger.info(f"Deleted {len(active)} active redemption(s) of perk {perk_definition_id} for user {self.user_id}")
        return len(active)

    def revert_to(
        self,
        perk_definition_id: str,
        snapshot: RedemptionSnapshot | None,
        now: datetime | None = None,
    ) -> RedemptionRecord | None:
        """Replace the perk's active records with ``snapshot`` in one transaction.

        ``snapshot=None`` leaves the perk available. A snapshot whose cycle has
        already closed is not restored.
        """
        now = now or datetime.now()
        restored = None
        try:
            for record in self._active_query([perk_definition_id], now).all():
                self.db.delete(record)
            if snapshot is not None and snapshot.cycle_reset_instant > now:
                restored = RedemptionRecord(
                    user_id=self.user_id,
                    perk_definition_id=snapshot.perk_definition_id,
                    card_enrollment_id=snapshot.card_enrollment_id,
                    redemption_instant=snapshot.redemption_instant,
                    cycle_reset_instant=snapshot.cycle_reset_instant,
                    status=snapshot.status,
                    value_redeemed=snapshot.value_redeemed,
                    total_value=snapshot.total_value,
                    remaining_value=max(0.0, snapshot.total_value - snapshot.value_redeemed),
                    parent_record_id=snapshot.parent_record_id,
                    is_auto_redemption=1 if snapshot.is_auto_redemption else 0,
                    provider=snapshot.provider,
                )
                self.db.add(restored)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(f"Failed to revert redemption for user {self.user_id}: {exc}")
            raise StorageError(str(exc)) from exc

        if restored is not None:
            self._verify_unique(restored, now)
        state = snapshot.status if restored else "available"
        logger.info(f"Reverted perk {perk_definition_id} for user {self.user_id} to {state}")
        return restored
