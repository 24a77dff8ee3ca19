"""Redemption error taxonomy."""


class RedemptionError(Exception):
    """Base class for every failure a redemption or undo can surface."""

    code = "redemption_error"
    message = "Redemption failed"

    def __init__(self, message: str | None = None, **context):
        self.context = context
        super().__init__(message or self.message)


class AlreadyRedeemedError(RedemptionError):
    code = "already_redeemed"
    message = "Perk already redeemed this period"


class InsufficientRemainingValueError(RedemptionError):
    code = "insufficient_remaining_value"
    message = "Amount exceeds the remaining value"


class ParentAlreadyRedeemedError(RedemptionError):
    code = "parent_already_redeemed"
    message = "Parent redemption is already fully redeemed"


class ParentRecordNotFoundError(RedemptionError):
    code = "parent_not_found"
    message = "Parent redemption not found"


class CardLinkageNotFoundError(RedemptionError):
    code = "card_linkage_not_found"
    message = "No active card enrollment found for this perk"


class PerkNotFoundError(RedemptionError):
    code = "perk_not_found"
    message = "Perk not found"


class InvalidAmountError(RedemptionError):
    code = "invalid_amount"
    message = "Amount must be greater than zero"


class StorageError(RedemptionError):
    code = "storage_error"
    message = "Storage operation failed"


class DuplicateActiveRecordError(StorageError):
    code = "duplicate_active_record"
    message = "More than one active redemption exists for this perk"


class UndoExpiredError(RedemptionError):
    code = "undo_expired"
    message = "Undo is no longer available"
