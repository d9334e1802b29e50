"""FastAPI dependencies for the API layer."""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.security import decode_access_token
from app.core.slug import direct_participants
from app.database import get_db
from app.models import Channel, ChannelType, User
from app.services.presence import touch_last_seen

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Retrieve the current user from the bearer token and refresh presence."""

    if credentials is None:
        raise _unauthorized("Not authenticated")
    user = get_user_from_token(credentials.credentials, db)
    touch_last_seen(user, db)
    return user


def get_user_from_token(token: str, db: Session) -> User:
    """Resolve a user from a JWT token or raise an HTTP 401 error."""

    payload = decode_access_token(token)
    sub = payload.get("sub")
    if not sub:
        raise _unauthorized()

    user = db.get(User, str(sub))
    if user is None:
        raise _unauthorized()
    return user


def can_view_channel(channel: Channel, user: User) -> bool:
    """Direct channels are visible to their two participants only."""

    if channel.type is not ChannelType.DIRECT:
        return True
    participants = direct_participants(channel.name)
    return participants is not None and user.id in participants


def get_visible_channel(channel_id: str, user: User, db: Session) -> Channel:
    channel = db.get(Channel, channel_id)
    if channel is None or not can_view_channel(channel, user):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Channel not found")
    return channel
