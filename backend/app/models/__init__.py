"""Database models package."""

from .base import Base
from .chat import Channel, FileChunk, Message, MessageReaction, User
from .enums import ChannelType, PresenceStatus

__all__ = [
    "Base",
    "User",
    "Channel",
    "Message",
    "MessageReaction",
    "FileChunk",
    "ChannelType",
    "PresenceStatus",
]
