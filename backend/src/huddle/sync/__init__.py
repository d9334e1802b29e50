"""Client-side channel synchronisation."""

from .backend import ChangeNotice, ChatContext
from .commands import OutboundCommands, SendResult
from .errors import (
    AuthError,
    ChatError,
    NotFoundError,
    PartialFailure,
    TransientBackendError,
    ValidationError,
)
from .ingestor import EventIngestor
from .models import (
    Attachment,
    Author,
    Channel,
    CurrentUser,
    Message,
    RawReaction,
    Thread,
    UploadFile,
    format_file_size,
)
from .reactions import ReactionSummary, aggregate_reactions
from .session import ChannelView
from .store import MessageTreeStore

__all__ = [
    "Attachment",
    "AuthError",
    "Author",
    "Channel",
    "ChannelView",
    "ChangeNotice",
    "ChatContext",
    "ChatError",
    "CurrentUser",
    "EventIngestor",
    "Message",
    "MessageTreeStore",
    "NotFoundError",
    "OutboundCommands",
    "PartialFailure",
    "RawReaction",
    "ReactionSummary",
    "SendResult",
    "Thread",
    "TransientBackendError",
    "UploadFile",
    "ValidationError",
    "aggregate_reactions",
    "format_file_size",
]
