from __future__ import annotations

from enum import Enum


class ChannelType(str, Enum):
    """Possible communication channel types."""

    PUBLIC = "public"
    PRIVATE = "private"
    DIRECT = "direct"


class PresenceStatus(str, Enum):
    """Presence derived from the last time a user was seen."""

    ONLINE = "online"
    AWAY = "away"
    OFFLINE = "offline"
