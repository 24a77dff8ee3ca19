"""Optimistic update coordination for perk redemptions.

A mutation applies its tentative view to local state before the ledger write
completes, keeps it on success and puts the previous view back on failure.
Successful mutations hand back a time-boxed undo action that runs the inverse
ledger operation through the same protocol. Mutations of one perk are
serialised; different perks do not wait on each other.

Local views only live while a mutation of the perk is in flight. An idle perk
has no entry and readers use the ledger-derived view.
"""
import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from perkcycle.schemas.perk import PerkStatusView
from perkcycle.services.errors import RedemptionError, UndoExpiredError

logger = logging.getLogger(__name__)

LedgerOperation = Callable[[], Awaitable[PerkStatusView]]


@dataclass
class MutationPlan:
    """What a mutation shows and runs, built once the perk's lock is held."""

    previous_view: PerkStatusView
    optimistic_view: PerkStatusView
    operation: LedgerOperation
    inverse: LedgerOperation | None = None


PlanBuilder = Callable[[], Awaitable[MutationPlan]]


@dataclass
class UndoAction:
    """Compensating action for a successful mutation."""

    token: str
    key: Hashable
    previous_view: PerkStatusView
    restored_view: PerkStatusView
    inverse: LedgerOperation
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass
class MutationOutcome:
    """Result of a mutation: the view to show, plus an error or an undo."""

    view: PerkStatusView | None
    error: RedemptionError | None = None
    undo: UndoAction | None = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.error is None


class OptimisticUpdateCoordinator:
    """Owns in-flight perk views and the pending undo actions."""

    def __init__(
        self,
        undo_window_seconds: float = 4.0,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.undo_window = timedelta(seconds=undo_window_seconds)
        self.clock = clock
        self._views: dict[Hashable, PerkStatusView] = {}
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiting: dict[Hashable, int] = {}
        self._pending_undo: dict[str, UndoAction] = {}

    def view(self, key: Hashable) -> PerkStatusView | None:
        """The in-flight view for ``key``, or None when the perk is idle."""
        return self._views.get(key)

    def current(self, key: Hashable, ledger_view: PerkStatusView) -> PerkStatusView:
        """The view presentation code should show: in-flight state wins."""
        return self._views.get(key, ledger_view)

    def is_pending(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def tracked_keys(self) -> set[Hashable]:
        return set(self._locks) | set(self._views)

    async def mutate(self, key: Hashable, plan: PlanBuilder) -> MutationOutcome:
        """Build the mutation under the perk's lock, apply it and settle.

        ``plan`` runs after earlier mutations of the same key have settled,
        so the previous view it captures reflects their writes.
        """
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiting[key] = self._waiting.get(key, 0) + 1
        try:
            async with lock:
                return await self._run(key, plan)
        finally:
            self._waiting[key] -= 1
            if not self._waiting[key]:
                del self._waiting[key]
                del self._locks[key]
                self._views.pop(key, None)

    async def _run(self, key: Hashable, plan: PlanBuilder) -> MutationOutcome:
        try:
            planned = await plan()
        except RedemptionError as exc:
            logger.warning(f"Mutation of {key} rejected before writing ({exc.code})")
            return MutationOutcome(view=None, error=exc)

        previous_view = planned.previous_view
        self._views[key] = planned.optimistic_view
        try:
            confirmed = await planned.operation()
        except RedemptionError as exc:
            self._views[key] = previous_view
            logger.warning(f"Mutation of {key} failed ({exc.code}); reverted local view")
            return MutationOutcome(view=previous_view, error=exc)
        except Exception:
            self._views[key] = previous_view
            raise

        if confirmed is not None:
            self._views[key] = confirmed
        settled = self._views[key]

        undo = None
        if planned.inverse is not None:
            undo = self._register_undo(key, previous_view, settled, planned.inverse)
        return MutationOutcome(view=settled, undo=undo)

    def _register_undo(
        self,
        key: Hashable,
        previous_view: PerkStatusView,
        restored_view: PerkStatusView,
        inverse: LedgerOperation,
    ) -> UndoAction:
        now = self.clock()
        self._prune(now)
        # A newer mutation of the same perk supersedes its older undo.
        self._drop_undo_for(key)
        action = UndoAction(
            token=uuid.uuid4().hex,
            key=key,
            previous_view=previous_view.model_copy(),
            restored_view=restored_view.model_copy(),
            inverse=inverse,
            expires_at=now + self.undo_window,
        )
        self._pending_undo[action.token] = action
        return action

    def _drop_undo_for(self, key: Hashable) -> None:
        for token in [t for t, a in self._pending_undo.items() if a.key == key]:
            del self._pending_undo[token]

    def _prune(self, now: datetime) -> None:
        for token in [t for t, a in self._pending_undo.items() if a.is_expired(now)]:
            del self._pending_undo[token]

    def pending_undo(self, token: str) -> UndoAction | None:
        action = self._pending_undo.get(token)
        if action is None or action.is_expired(self.clock()):
            return None
        return action

    async def undo(self, token: str) -> MutationOutcome:
        """Run a pending undo: restore the previous view, then the inverse write."""
        action = self.pending_undo(token)
        if action is None:
            self._pending_undo.pop(token, None)
            return MutationOutcome(view=None, error=UndoExpiredError(token=token))

        async def plan() -> MutationPlan:
            # Claimed under the lock so a mutation that settled first supersedes it
            if self._pending_undo.pop(token, None) is None:
                raise UndoExpiredError(token=token)
            return MutationPlan(
                previous_view=action.restored_view,
                optimistic_view=action.previous_view,
                operation=action.inverse,
            )

        return await self.mutate(action.key, plan)
