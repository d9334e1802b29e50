"""Attachment upload and public download endpoints."""

from __future__ import annotations

import mimetypes
from pathlib import PurePosixPath

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, get_visible_channel
from app.core.storage import describe_file_type, format_file_size, resolve_path, store_upload
from app.database import get_db
from app.models import User
from app.schemas import UploadedAttachment

router = APIRouter(prefix="/attachments", tags=["attachments"])


@router.post("", response_model=UploadedAttachment, status_code=status.HTTP_201_CREATED)
async def upload_attachment(
    channel_id: str = Form(...),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UploadedAttachment:
    """Upload a blob for subsequent inclusion in a message."""

    channel = get_visible_channel(channel_id, current_user, db)
    stored = await store_upload(channel.id, file)
    return UploadedAttachment(
        id=stored.relative_path,
        name=stored.file_name,
        url=stored.url,
        content_type=stored.content_type,
        size=stored.file_size,
        size_label=format_file_size(stored.file_size),
        file_type=describe_file_type(stored.file_name, stored.content_type),
    )


@router.get("/{path:path}")
def download_attachment(path: str) -> FileResponse:
    """Serve a stored blob by its public path."""

    file_path = resolve_path(path)
    media_type = mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"
    return FileResponse(file_path, media_type=media_type, filename=PurePosixPath(path).name)
