from fastapi import APIRouter

from app.api.attachments import router as attachments_router
from app.api.auth import router as auth_router
from app.api.channels import router as channels_router
from app.api.embeddings import router as embeddings_router
from app.api.messages import router as messages_router
from app.api.users import router as users_router

router = APIRouter()

router.include_router(auth_router, prefix="/auth", tags=["auth"])
router.include_router(channels_router)
router.include_router(messages_router)
router.include_router(attachments_router)
router.include_router(embeddings_router)
router.include_router(users_router)


@router.get("/", tags=["root"])
def read_root() -> dict[str, str]:
    return {"message": "Welcome to the Huddle API"}
