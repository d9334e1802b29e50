"""Helpers for channel names."""

from __future__ import annotations

import re
import unicodedata

MAX_NAME_LENGTH = 64
DIRECT_PREFIX = "dm"


def normalize_channel_name(value: str) -> str:
    """Lowercase and hyphenate a human supplied channel name."""

    normalized = unicodedata.normalize("NFKC", value).strip()
    if not normalized:
        return ""
    lowered = normalized.casefold()
    name = re.sub(r"[^\w]+", "-", lowered, flags=re.UNICODE)
    name = re.sub(r"-+", "-", name).strip("-")
    return name[:MAX_NAME_LENGTH].rstrip("-")


def channel_name_for(user_id: str, other_id: str) -> str:
    """Deterministic name of the direct channel shared by two users.

    The pair is sorted so both participants resolve the same channel.
    """

    first, second = sorted((str(user_id), str(other_id)))
    return f"{DIRECT_PREFIX}:{first}:{second}"


def direct_participants(name: str) -> tuple[str, str] | None:
    """Return the participant pair encoded in a direct channel name."""

    parts = name.split(":")
    if len(parts) != 3 or parts[0] != DIRECT_PREFIX:
        return None
    return parts[1], parts[2]
