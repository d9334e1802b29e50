"""Blob storage for message attachments."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Final
from uuid import uuid4

from fastapi import HTTPException, UploadFile, status

from huddle.sync.models import format_file_size

from app.config import get_settings

settings = get_settings()

_CHUNK_SIZE: Final[int] = 1024 * 1024  # 1 MiB


@dataclass(slots=True)
class StoredFile:
    """Represents a file persisted by the storage backend."""

    file_name: str
    content_type: str | None
    file_size: int
    absolute_path: Path
    relative_path: str

    @property
    def url(self) -> str:
        return public_url(self.relative_path)


def _media_root() -> Path:
    root = settings.media_root
    root.mkdir(parents=True, exist_ok=True)
    return root


async def store_upload(channel_id: str, upload: UploadFile) -> StoredFile:
    """Persist an uploaded file under the channel folder and return its metadata."""

    target_dir = _media_root() / f"channel_{channel_id}"
    target_dir.mkdir(parents=True, exist_ok=True)

    original_name = upload.filename or "upload.bin"
    extension = Path(original_name).suffix
    file_name = f"{uuid4().hex}{extension}"
    absolute_path = target_dir / file_name

    total_size = 0
    try:
        with absolute_path.open("wb") as buffer:
            while True:
                chunk = await upload.read(_CHUNK_SIZE)
                if not chunk:
                    break
                total_size += len(chunk)
                if total_size > settings.max_upload_size:
                    raise HTTPException(
                        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                        detail="Attachment exceeds allowed size",
                    )
                buffer.write(chunk)
    except HTTPException:
        if absolute_path.exists():
            absolute_path.unlink()
        raise
    finally:
        await upload.close()

    relative_path = PurePosixPath(f"channel_{channel_id}", file_name).as_posix()
    return StoredFile(
        file_name=original_name,
        content_type=upload.content_type or mimetypes.guess_type(original_name)[0],
        file_size=total_size,
        absolute_path=absolute_path,
        relative_path=relative_path,
    )


def resolve_path(relative_path: str) -> Path:
    """Return an absolute path for a stored file relative path."""

    root = _media_root().resolve()
    candidate = (root / relative_path).resolve()
    if not candidate.is_relative_to(root):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid file path")
    if not candidate.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return candidate


def remove_file(relative_path: str) -> bool:
    """Delete a stored blob; returns False when it was already gone."""

    try:
        path = resolve_path(relative_path)
    except HTTPException as exc:
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            return False
        raise
    path.unlink()
    return True


def public_url(relative_path: str) -> str:
    """Construct the public download URL for a stored blob."""

    base = settings.media_base_url.rstrip("/")
    return f"{base}/{relative_path}"


def describe_file_type(file_name: str, content_type: str | None) -> str:
    """Short label such as PDF or PNG used when listing shared files."""

    extension = PurePosixPath(file_name).suffix.lstrip(".").upper() or "FILE"
    if not content_type or "/" not in content_type:
        return extension
    category, subtype = content_type.split("/", 1)
    if category == "application":
        return extension
    return subtype.split(";", 1)[0].upper()
