"""Schemas for embedding generation and semantic search."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.models.enums import PresenceStatus
from app.schemas.messages import AttachmentRead, ReactionSummaryRead
from app.schemas.users import PublicUser


class EmbeddingRequest(BaseModel):
    """Embed one message, or every pending message when ``messageId`` is omitted."""

    model_config = ConfigDict(populate_by_name=True)

    message_id: str | None = Field(default=None, alias="messageId")


class EmbeddingResult(BaseModel):
    processed: int = 0
    failed: int = 0
    chunks: int = 0


class SearchReply(BaseModel):
    id: str
    channel_id: str
    user_id: str | None
    parent_message_id: str | None = None
    content: str
    attachments: list[AttachmentRead] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    author: PublicUser | None = None
    reactions: list[ReactionSummaryRead] = Field(default_factory=list)


class SearchMessage(SearchReply):
    similarity: float
    replies: list[SearchReply] = Field(default_factory=list)


class SearchFile(BaseModel):
    file_path: str
    file_name: str
    content_type: str | None = None
    file_type: str
    url: str
    score: float
    similarity: float
    excerpt: str
    message_id: str
    channel_id: str
    shared_by: PublicUser | None = None
    shared_at: datetime


class SearchPerson(PublicUser):
    score: float
    status: PresenceStatus
    last_seen_at: datetime | None = None


class SearchResponse(BaseModel):
    query: str
    messages: list[SearchMessage] = Field(default_factory=list)
    files: list[SearchFile] = Field(default_factory=list)
    people: list[SearchPerson] = Field(default_factory=list)
