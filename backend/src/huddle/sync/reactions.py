"""Folding of raw reaction rows into per-emoji summaries."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol


class ReactionRow(Protocol):
    emoji: str
    user_id: str


@dataclass(frozen=True, slots=True)
class ReactionSummary:
    emoji: str
    count: int
    users: tuple[str, ...]

    def to_dict(self) -> dict[str, object]:
        return {"emoji": self.emoji, "count": self.count, "users": list(self.users)}


def aggregate_reactions(rows: Iterable[ReactionRow]) -> list[ReactionSummary]:
    """Group rows by emoji in first-seen order; ``count`` is the number of users."""

    grouped: dict[str, list[str]] = {}
    for row in rows:
        users = grouped.setdefault(row.emoji, [])
        user_id = str(row.user_id)
        if user_id not in users:
            users.append(user_id)
    return [ReactionSummary(emoji, len(users), tuple(users)) for emoji, users in grouped.items()]
