"""People directory with derived presence."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.database import get_db
from app.models import PresenceStatus, User
from app.schemas import UserPresenceRead
from app.services.presence import presence_status

router = APIRouter(prefix="/users", tags=["users"])

_STATUS_ORDER = {PresenceStatus.ONLINE: 0, PresenceStatus.AWAY: 1, PresenceStatus.OFFLINE: 2}


def _with_presence(user: User, now: datetime) -> UserPresenceRead:
    profile = UserPresenceRead.model_validate(user)
    profile.status = presence_status(user.last_seen_at, now)
    return profile


@router.get("", response_model=list[UserPresenceRead])
def list_users(
    presence: PresenceStatus | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[UserPresenceRead]:
    """List people, online first, optionally narrowed to one presence status."""

    now = datetime.now(timezone.utc)
    users = db.execute(select(User).order_by(User.username)).scalars()
    profiles = [_with_presence(user, now) for user in users]
    if presence is not None:
        profiles = [profile for profile in profiles if profile.status is presence]
    profiles.sort(key=lambda profile: _STATUS_ORDER[profile.status])
    return profiles


@router.get("/{user_id}", response_model=UserPresenceRead)
def read_user(
    user_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UserPresenceRead:
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return _with_presence(user, datetime.now(timezone.utc))
