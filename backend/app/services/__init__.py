"""Application service helpers."""

from .changes import message_record, publish_message_change, publish_reaction_change, reaction_record
from .embeddings import Embedder, EmbeddingError, embed_message, embed_pending, get_embedder
from .presence import presence_status, touch_last_seen
from .reactions import ToggleOutcome, list_reactions, toggle_reaction

__all__ = [
    "Embedder",
    "EmbeddingError",
    "ToggleOutcome",
    "embed_message",
    "embed_pending",
    "get_embedder",
    "list_reactions",
    "message_record",
    "presence_status",
    "publish_message_change",
    "publish_reaction_change",
    "reaction_record",
    "toggle_reaction",
    "touch_last_seen",
]
