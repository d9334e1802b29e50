"""HTTP endpoints for managing chat messages and their reactions."""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import Iterable

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Response, status
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from huddle.realtime import ChangeEvent

from app.api.channels import serialize_message
from app.api.deps import can_view_channel, get_current_user, get_visible_channel
from app.config import get_settings
from app.core.storage import remove_file, resolve_path
from app.database import get_db
from app.models import Message, User
from app.monitoring.metrics import attachment_cleanup_failures_total
from app.schemas import (
    MessageCreate,
    MessageRead,
    MessageUpdate,
    ReactionRead,
    ReactionToggleRequest,
    ReactionToggleResult,
)
from app.services.changes import message_record, publish_message_change, publish_reaction_change
from app.services.reactions import list_reactions, toggle_reaction

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["messages"])

settings = get_settings()


def _get_message(message_id: str, db: Session) -> Message:
    stmt = (
        select(Message)
        .where(Message.id == message_id)
        .options(
            selectinload(Message.author),
            selectinload(Message.channel),
            selectinload(Message.reactions),
            selectinload(Message.replies),
        )
    )
    message = db.execute(stmt).scalar_one_or_none()
    if message is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    return message


def _get_visible_message(message_id: str, user: User, db: Session) -> Message:
    message = _get_message(message_id, db)
    if not can_view_channel(message.channel, user):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    return message


def _require_author(message: Message, user: User, action: str) -> None:
    if message.user_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Only the author can {action} this message",
        )


def _normalize_content(content: str, *, has_attachments: bool) -> str:
    normalized = content.rstrip()
    if not normalized.strip() and not has_attachments:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Message content is required")
    if len(normalized) > settings.chat_message_max_length:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Message exceeds maximum length of {settings.chat_message_max_length} characters",
        )
    return normalized


def _in_channel_folder(path: str, channel_id: str) -> bool:
    parts = PurePosixPath(path).parts
    return len(parts) == 2 and parts[0] == f"channel_{channel_id}" and parts[1] != ".."


def referenced_blob_paths(db: Session, channel_id: str) -> set[str]:
    """Blob paths attached to any message of the channel."""

    rows = db.execute(select(Message.attachments).where(Message.channel_id == channel_id)).scalars()
    return {
        str(attachment["id"])
        for attachments in rows
        for attachment in attachments or []
        if attachment.get("id")
    }


def remove_attachment_blobs(paths: Iterable[str]) -> None:
    """Best-effort blob cleanup run after a delete has been committed."""

    for path in paths:
        try:
            removed = remove_file(path)
        except (HTTPException, OSError):
            attachment_cleanup_failures_total.labels().inc()
            logger.exception("Failed to remove attachment blob %s", path)
            continue
        if not removed:
            logger.info("Attachment blob %s was already gone", path)


@router.post("", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
async def create_message(
    payload: MessageCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageRead:
    """Create a message or a reply to a top-level message."""

    channel = get_visible_channel(payload.channel_id, current_user, db)

    if payload.parent_message_id is not None:
        parent = db.get(Message, payload.parent_message_id)
        if parent is None or parent.channel_id != channel.id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Parent message mismatch")
        if parent.parent_message_id is not None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Replies can only target top-level messages",
            )

    content = _normalize_content(payload.content, has_attachments=bool(payload.attachments))

    # A blob belongs to the channel it was uploaded to and to one message.
    claimed = referenced_blob_paths(db, channel.id) if payload.attachments else set()
    for attachment in payload.attachments:
        usable = _in_channel_folder(attachment.id, channel.id) and attachment.id not in claimed
        if usable:
            try:
                resolve_path(attachment.id)
            except HTTPException:
                usable = False
        if not usable:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown attachment {attachment.name}",
            )
        claimed.add(attachment.id)

    message = Message(
        channel_id=channel.id,
        user_id=current_user.id,
        parent_message_id=payload.parent_message_id,
        content=content,
        attachments=[attachment.model_dump() for attachment in payload.attachments],
    )
    db.add(message)
    db.commit()

    message = _get_message(message.id, db)
    await publish_message_change(ChangeEvent.INSERT, new=message_record(message))
    return serialize_message(message)


@router.get("/{message_id}", response_model=MessageRead)
def read_message(
    message_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageRead:
    """Return one message with its author and raw reaction rows."""

    return serialize_message(_get_visible_message(message_id, current_user, db))


@router.patch("/{message_id}", response_model=MessageRead)
async def update_message(
    message_id: str,
    payload: MessageUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MessageRead:
    """Edit message content."""

    message = _get_visible_message(message_id, current_user, db)
    _require_author(message, current_user, "edit")

    previous = message_record(message)
    message.content = _normalize_content(payload.content, has_attachments=bool(message.attachments))
    # Stale vectors would surface the old wording in search.
    message.embedding = None
    db.add(message)
    db.commit()

    message = _get_message(message.id, db)
    await publish_message_change(ChangeEvent.UPDATE, new=message_record(message), old=previous)
    return serialize_message(message)


@router.delete("/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Response:
    """Delete a message, its replies and reactions; blobs are removed afterwards."""

    message = _get_visible_message(message_id, current_user, db)
    _require_author(message, current_user, "delete")

    doomed = [*message.replies, message]
    records = [message_record(item) for item in doomed]
    blob_paths = [
        str(attachment["id"])
        for item in doomed
        for attachment in item.attachments or []
        if attachment.get("id")
    ]

    channel_id = message.channel_id
    db.delete(message)
    db.commit()
    logger.info("Message %s deleted by %s", message_id, current_user.id)

    still_attached = referenced_blob_paths(db, channel_id)
    blob_paths = [path for path in blob_paths if path not in still_attached]

    for record in records:
        await publish_message_change(ChangeEvent.DELETE, old=record)
    if blob_paths:
        background_tasks.add_task(remove_attachment_blobs, blob_paths)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{message_id}/reactions", response_model=list[ReactionRead])
def read_reactions(
    message_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[ReactionRead]:
    message = _get_visible_message(message_id, current_user, db)
    return [ReactionRead.model_validate(reaction) for reaction in list_reactions(db, message.id)]


@router.post("/{message_id}/reactions", response_model=ReactionToggleResult)
async def toggle_message_reaction(
    message_id: str,
    payload: ReactionToggleRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ReactionToggleResult:
    """Add the caller's emoji, or remove it when already present."""

    message = _get_visible_message(message_id, current_user, db)
    outcome = toggle_reaction(db, message_id=message.id, user_id=current_user.id, emoji=payload.emoji)
    if outcome.added:
        await publish_reaction_change(ChangeEvent.INSERT, new=outcome.record)
    else:
        await publish_reaction_change(ChangeEvent.DELETE, old=outcome.record)

    return ReactionToggleResult(
        message_id=message.id,
        emoji=payload.emoji,
        added=outcome.added,
        reactions=[ReactionRead.model_validate(reaction) for reaction in list_reactions(db, message.id)],
    )
