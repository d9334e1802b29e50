"""Session endpoints."""

from fastapi import APIRouter, Depends

from app.api.deps import get_current_user
from app.models import User
from app.schemas import CurrentUserRead
from app.services.presence import presence_status

router = APIRouter()


@router.get("/me", response_model=CurrentUserRead)
def read_current_user(current_user: User = Depends(get_current_user)) -> CurrentUserRead:
    """Return the signed-in user with derived presence."""

    profile = CurrentUserRead.model_validate(current_user)
    profile.status = presence_status(current_user.last_seen_at)
    return profile
