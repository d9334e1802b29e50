"""Schemas related to user profiles."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from app.models.enums import PresenceStatus


class PublicUser(BaseModel):
    """Minimal public-facing user information."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    full_name: str | None = None
    title: str | None = None
    avatar_url: str | None = None


class CurrentUserRead(PublicUser):
    """The signed-in user as returned by ``/api/auth/me``."""

    email: str | None = None
    last_seen_at: datetime | None = None
    status: PresenceStatus = PresenceStatus.OFFLINE


class UserPresenceRead(PublicUser):
    """A user as listed in the people directory."""

    last_seen_at: datetime | None = None
    status: PresenceStatus = PresenceStatus.OFFLINE
