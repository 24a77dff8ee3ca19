"""Shared API dependencies."""
import logging

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from perkcycle.database import get_db
from perkcycle.models.user import User
from perkcycle.services.coordinator import OptimisticUpdateCoordinator
from perkcycle.services.tracker import PerkTracker

logger = logging.getLogger(__name__)

__all__ = ["get_db", "get_current_user", "get_coordinator", "get_tracker"]


def get_current_user(
    x_user_id: str | None = Header(None),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the caller from the ``X-User-Id`` header set by the auth proxy."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )

    user = db.get(User, x_user_id)
    if user is None:
        user = User(id=x_user_id, username=x_user_id)
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info(f"Registered user {x_user_id}")
    return user


def get_coordinator(request: Request) -> OptimisticUpdateCoordinator:
    return request.app.state.coordinator


def get_tracker(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    coordinator: OptimisticUpdateCoordinator = Depends(get_coordinator),
) -> PerkTracker:
    return PerkTracker(db, current_user.id, coordinator)
