"""Pydantic schemas for API payloads."""

from .channels import ChannelCreate, ChannelRead
from .messages import (
    AttachmentRead,
    MessageCreate,
    MessageRead,
    MessageUpdate,
    ReactionRead,
    ReactionSummaryRead,
    ReactionToggleRequest,
    ReactionToggleResult,
    ThreadRead,
    UploadedAttachment,
)
from .search import (
    EmbeddingRequest,
    EmbeddingResult,
    SearchFile,
    SearchMessage,
    SearchPerson,
    SearchReply,
    SearchResponse,
)
from .users import CurrentUserRead, PublicUser, UserPresenceRead

__all__ = [
    "AttachmentRead",
    "ChannelCreate",
    "ChannelRead",
    "CurrentUserRead",
    "EmbeddingRequest",
    "EmbeddingResult",
    "MessageCreate",
    "MessageRead",
    "MessageUpdate",
    "PublicUser",
    "ReactionRead",
    "ReactionSummaryRead",
    "ReactionToggleRequest",
    "ReactionToggleResult",
    "SearchFile",
    "SearchMessage",
    "SearchPerson",
    "SearchReply",
    "SearchResponse",
    "ThreadRead",
    "UploadedAttachment",
    "UserPresenceRead",
]
