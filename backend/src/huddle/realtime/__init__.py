"""Realtime change feed shared by the API and websocket layers."""

from .feed import (  # noqa: F401
    MESSAGES_TABLE,
    REACTIONS_TABLE,
    ChangeEvent,
    ChangeFeed,
    FeedSubscription,
    RowChange,
    get_change_feed,
    shutdown_realtime,
    startup_realtime,
)
from .transport import ChangeRelay, RelayConfig, RelayUnavailableError  # noqa: F401

__all__ = [
    "MESSAGES_TABLE",
    "REACTIONS_TABLE",
    "ChangeEvent",
    "ChangeFeed",
    "FeedSubscription",
    "RowChange",
    "ChangeRelay",
    "RelayConfig",
    "RelayUnavailableError",
    "get_change_feed",
    "startup_realtime",
    "shutdown_realtime",
]
