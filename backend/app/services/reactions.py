"""Atomic reaction toggling."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models import MessageReaction
from app.services.changes import reaction_record

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToggleOutcome:
    """Result of a toggle: whether the reaction now exists and the affected row."""

    added: bool
    record: dict[str, Any]


def _remove_existing(
    db: Session, message_id: str, user_id: str, emoji: str
) -> dict[str, Any] | None:
    stmt = (
        select(MessageReaction)
        .where(
            MessageReaction.message_id == message_id,
            MessageReaction.user_id == user_id,
            MessageReaction.emoji == emoji,
        )
        .with_for_update()
    )
    existing = db.execute(stmt).scalar_one_or_none()
    if existing is None:
        return None
    record = reaction_record(existing)
    db.delete(existing)
    db.commit()
    return record


def toggle_reaction(db: Session, *, message_id: str, user_id: str, emoji: str) -> ToggleOutcome:
    """Remove the user's emoji on the message if present, otherwise add it.

    Runs as one transaction per branch. When a concurrent toggle by the same
    user inserts the row first, the unique constraint rejects our insert and
    this toggle removes that row instead, so two toggles always cancel out.
    """

    removed = _remove_existing(db, message_id, user_id, emoji)
    if removed is not None:
        return ToggleOutcome(added=False, record=removed)

    reaction = MessageReaction(message_id=message_id, user_id=user_id, emoji=emoji)
    db.add(reaction)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.debug("Concurrent toggle detected for %s on %s", emoji, message_id)
        removed = _remove_existing(db, message_id, user_id, emoji)
        if removed is None:
            raise
        return ToggleOutcome(added=False, record=removed)
    db.refresh(reaction)
    return ToggleOutcome(added=True, record=reaction_record(reaction))


def list_reactions(db: Session, message_id: str) -> list[MessageReaction]:
    stmt = (
        select(MessageReaction)
        .where(MessageReaction.message_id == message_id)
        .order_by(MessageReaction.created_at, MessageReaction.id)
    )
    return list(db.execute(stmt).scalars())
