"""Channel endpoints and message serialization helpers."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.api.deps import can_view_channel, get_current_user, get_visible_channel
from app.core.slug import channel_name_for, normalize_channel_name
from app.database import get_db
from app.models import Channel, ChannelType, Message, User
from app.schemas import (
    AttachmentRead,
    ChannelCreate,
    ChannelRead,
    MessageRead,
    PublicUser,
    ReactionRead,
    ThreadRead,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/channels", tags=["channels"])


def serialize_user(user: User | None) -> PublicUser | None:
    if user is None:
        return None
    return PublicUser.model_validate(user)


def serialize_attachments(message: Message) -> list[AttachmentRead]:
    return [AttachmentRead.model_validate(item) for item in message.attachments or []]


def _message_fields(message: Message) -> dict[str, Any]:
    return {
        "id": message.id,
        "channel_id": message.channel_id,
        "user_id": message.user_id,
        "parent_message_id": message.parent_message_id,
        "content": message.content,
        "attachments": serialize_attachments(message),
        "created_at": message.created_at,
        "updated_at": message.updated_at,
        "author": serialize_user(message.author),
    }


def serialize_message(message: Message) -> MessageRead:
    return MessageRead(
        **_message_fields(message),
        reactions=[ReactionRead.model_validate(reaction) for reaction in message.reactions],
    )


def serialize_thread(message: Message) -> ThreadRead:
    return ThreadRead(
        **_message_fields(message),
        reactions=[ReactionRead.model_validate(reaction) for reaction in message.reactions],
        replies=[serialize_message(reply) for reply in message.replies],
    )


def _find_direct_channel(name: str, db: Session) -> Channel | None:
    return db.execute(select(Channel).where(Channel.name == name)).scalar_one_or_none()


@router.get("", response_model=list[ChannelRead])
def list_channels(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[Channel]:
    """List shared channels and the caller's direct conversations."""

    stmt = (
        select(Channel)
        .where(
            or_(
                Channel.type != ChannelType.DIRECT,
                Channel.name.like(f"%:{current_user.id}%"),
            )
        )
        .order_by(Channel.name)
    )
    return [channel for channel in db.execute(stmt).scalars() if can_view_channel(channel, current_user)]


@router.post("", response_model=ChannelRead, status_code=status.HTTP_201_CREATED)
def create_channel(
    payload: ChannelCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Channel:
    if payload.type is ChannelType.DIRECT:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Direct channels are created per conversation partner",
        )
    name = normalize_channel_name(payload.name)
    if not name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Channel name is invalid")

    channel = Channel(name=name, type=payload.type)
    db.add(channel)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Channel already exists") from None
    db.refresh(channel)
    logger.info("Channel %s created by %s", channel.name, current_user.id)
    return channel


@router.post("/direct/{peer_user_id}", response_model=ChannelRead)
def resolve_direct_channel(
    peer_user_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Channel:
    """Find or create the direct channel shared with another user."""

    if db.get(User, peer_user_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    name = channel_name_for(current_user.id, peer_user_id)
    channel = _find_direct_channel(name, db)
    if channel is not None:
        return channel

    channel = Channel(name=name, type=ChannelType.DIRECT)
    db.add(channel)
    try:
        db.commit()
    except IntegrityError:
        # The peer opened the conversation at the same moment.
        db.rollback()
        channel = _find_direct_channel(name, db)
        if channel is None:
            raise
        return channel
    db.refresh(channel)
    return channel


@router.get("/{channel_id}", response_model=ChannelRead)
def read_channel(
    channel_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Channel:
    return get_visible_channel(channel_id, current_user, db)


@router.get("/{channel_id}/messages", response_model=list[ThreadRead])
def list_channel_messages(
    channel_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[ThreadRead]:
    """Top-level messages oldest first, each with its replies and raw reactions."""

    channel = get_visible_channel(channel_id, current_user, db)
    stmt = (
        select(Message)
        .where(Message.channel_id == channel.id, Message.parent_message_id.is_(None))
        .order_by(Message.created_at, Message.id)
        .options(
            selectinload(Message.author),
            selectinload(Message.reactions),
            selectinload(Message.replies).selectinload(Message.author),
            selectinload(Message.replies).selectinload(Message.reactions),
        )
    )
    return [serialize_thread(message) for message in db.execute(stmt).scalars()]
