"""Presence derived from the last time a user was seen."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from app.config import get_settings
from app.models import PresenceStatus, User

settings = get_settings()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def presence_status(last_seen_at: datetime | None, now: datetime | None = None) -> PresenceStatus:
    """Online within the online window, away within the away window, else offline."""

    if last_seen_at is None:
        return PresenceStatus.OFFLINE
    current = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    elapsed = current - _as_utc(last_seen_at)
    if elapsed <= timedelta(minutes=settings.presence_online_minutes):
        return PresenceStatus.ONLINE
    if elapsed <= timedelta(minutes=settings.presence_away_minutes):
        return PresenceStatus.AWAY
    return PresenceStatus.OFFLINE


def touch_last_seen(user: User, db: Session, now: datetime | None = None) -> bool:
    """Refresh ``last_seen_at`` at most once per touch interval."""

    current = now or datetime.now(timezone.utc)
    if user.last_seen_at is not None:
        elapsed = current - _as_utc(user.last_seen_at)
        if elapsed < timedelta(seconds=settings.presence_touch_interval_seconds):
            return False
    user.last_seen_at = current
    db.add(user)
    db.commit()
    return True
