"""Schemas related to chat messages."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.users import PublicUser


class AttachmentRead(BaseModel):
    """Attachment reference stored on a message."""

    id: str = Field(..., description="Storage path of the blob")
    name: str
    url: str


class UploadedAttachment(AttachmentRead):
    """Response of the attachment upload endpoint."""

    content_type: str | None = None
    size: int = Field(..., ge=0)
    size_label: str
    file_type: str


class MessageCreate(BaseModel):
    channel_id: str
    content: str = ""
    parent_message_id: str | None = None
    attachments: list[AttachmentRead] = Field(default_factory=list)


class MessageUpdate(BaseModel):
    content: str


class ReactionRead(BaseModel):
    """One raw reaction row."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    message_id: str
    user_id: str
    emoji: str
    created_at: datetime


class ReactionSummaryRead(BaseModel):
    """Aggregated reaction information for a message."""

    emoji: str
    count: int = Field(..., ge=0)
    users: list[str] = Field(default_factory=list)


class ReactionToggleRequest(BaseModel):
    emoji: str = Field(..., min_length=1, max_length=32)


class ReactionToggleResult(BaseModel):
    message_id: str
    emoji: str
    added: bool
    reactions: list[ReactionRead]


class MessageRead(BaseModel):
    """A message with its author and raw reaction rows."""

    id: str
    channel_id: str
    user_id: str | None
    parent_message_id: str | None = None
    content: str
    attachments: list[AttachmentRead] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    author: PublicUser | None = None
    reactions: list[ReactionRead] = Field(default_factory=list)


class ThreadRead(MessageRead):
    """Top-level message together with its replies."""

    replies: list[MessageRead] = Field(default_factory=list)
