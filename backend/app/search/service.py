"""Semantic search across messages, shared files and people."""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, Hashable, Iterable, Sequence, TypeVar

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from app.config import get_settings
from app.core.slug import direct_participants
from app.models import Channel, ChannelType, FileChunk, Message, PresenceStatus, User
from app.services.embeddings import Embedder
from app.services.presence import presence_status

settings = get_settings()

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    """Cosine similarity of two vectors; mismatched or zero vectors score 0."""

    if not left or len(left) != len(right):
        return 0.0
    dot = sum(a * b for a, b in zip(left, right))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    if norm == 0:
        return 0.0
    return dot / norm


def reciprocal_rank_fusion(rankings: Iterable[Sequence[K]]) -> list[tuple[K, float]]:
    """Fuse ranked lists: each appearance at 0-based rank r contributes 1/(r+1).

    Equal scores keep the order in which keys were first seen.
    """

    scores: dict[K, float] = {}
    for ranking in rankings:
        for rank, key in enumerate(ranking):
            scores[key] = scores.get(key, 0.0) + 1.0 / (rank + 1)
    return sorted(scores.items(), key=lambda item: item[1], reverse=True)


@dataclass(frozen=True, slots=True)
class VectorMatch(Generic[T]):
    item: T
    similarity: float


@dataclass(slots=True)
class FileHit:
    """A shared file found through one or more of its indexed chunks."""

    file_path: str
    file_name: str
    content_type: str | None
    message: Message
    score: float
    similarity: float
    excerpt: str


@dataclass(slots=True)
class PersonHit:
    user: User
    score: float
    status: PresenceStatus


@dataclass(slots=True)
class SearchOutcome:
    messages: list[VectorMatch[Message]] = field(default_factory=list)
    files: list[FileHit] = field(default_factory=list)
    people: list[PersonHit] = field(default_factory=list)


class SemanticSearchService:
    """Run the query embedding against stored message and file chunk vectors.

    Direct channels the viewer does not take part in are never searched.
    """

    def __init__(self, session: Session, embedder: Embedder, viewer: User | None = None):
        self._session = session
        self._embedder = embedder
        self._viewer = viewer

    async def search(self, query: str, *, now: datetime | None = None) -> SearchOutcome:
        vector = await self._embedder.embed(query)
        messages = self.search_messages(vector)
        files = self.search_files(vector)
        people = self.search_people(query, messages, now=now)
        return SearchOutcome(messages=messages, files=files, people=people)

    def _visible(self, channel: Channel) -> bool:
        if channel.type is not ChannelType.DIRECT:
            return True
        participants = direct_participants(channel.name)
        if self._viewer is None or participants is None:
            return False
        return self._viewer.id in participants

    def _rank(
        self,
        candidates: Iterable[T],
        vectors: Iterable[list[float] | None],
        query: Sequence[float],
        limit: int,
    ) -> list[VectorMatch[T]]:
        threshold = settings.search_similarity_threshold
        matches = []
        for item, vector in zip(candidates, vectors):
            if not vector:
                continue
            similarity = cosine_similarity(query, vector)
            if similarity > threshold:
                matches.append(VectorMatch(item, similarity))
        matches.sort(key=lambda match: match.similarity, reverse=True)
        return matches[:limit]

    def search_messages(self, query: Sequence[float]) -> list[VectorMatch[Message]]:
        stmt = (
            select(Message)
            .where(Message.embedding.is_not(None))
            .options(
                selectinload(Message.author),
                selectinload(Message.channel),
                selectinload(Message.reactions),
                selectinload(Message.replies).selectinload(Message.author),
                selectinload(Message.replies).selectinload(Message.reactions),
            )
        )
        candidates = [
            message for message in self._session.execute(stmt).scalars() if self._visible(message.channel)
        ]
        vectors = (message.embedding for message in candidates)
        return self._rank(candidates, vectors, query, settings.search_message_limit)

    def search_files(self, query: Sequence[float]) -> list[FileHit]:
        """Rank chunks, then fold them into one hit per file using reciprocal rank fusion."""

        stmt = (
            select(FileChunk)
            .where(FileChunk.embedding.is_not(None))
            .options(
                selectinload(FileChunk.message).selectinload(Message.channel),
                selectinload(FileChunk.message).selectinload(Message.author),
            )
        )
        candidates = [
            chunk for chunk in self._session.execute(stmt).scalars() if self._visible(chunk.message.channel)
        ]
        vectors = (chunk.embedding for chunk in candidates)
        ranked = self._rank(candidates, vectors, query, settings.search_file_chunk_limit)

        by_file: dict[str, list[VectorMatch[FileChunk]]] = defaultdict(list)
        for match in ranked:
            by_file[match.item.file_path].append(match)

        hits = []
        for path, score in reciprocal_rank_fusion([[match.item.file_path for match in ranked]]):
            best = by_file[path][0]
            hits.append(
                FileHit(
                    file_path=path,
                    file_name=best.item.file_name,
                    content_type=best.item.content_type,
                    message=best.item.message,
                    score=score,
                    similarity=best.similarity,
                    excerpt=best.item.content,
                )
            )
        return hits

    def match_people(self, query: str) -> list[User]:
        term = query.strip().lower()
        if not term:
            return []
        pattern = f"%{term}%"
        stmt = select(User).where(
            or_(
                func.lower(User.username).like(pattern),
                func.lower(func.coalesce(User.full_name, "")).like(pattern),
            )
        )
        users = list(self._session.execute(stmt).scalars())

        def closeness(user: User) -> tuple[int, str]:
            username = user.username.lower()
            if username == term:
                return (0, username)
            if username.startswith(term):
                return (1, username)
            return (2, username)

        users.sort(key=closeness)
        return users[: settings.search_people_limit]

    def search_people(
        self,
        query: str,
        messages: Sequence[VectorMatch[Message]],
        *,
        now: datetime | None = None,
    ) -> list[PersonHit]:
        """Fuse direct name matches with the authors of the best matching messages."""

        by_id: dict[str, User] = {}
        name_ranking = []
        for user in self.match_people(query):
            by_id[user.id] = user
            name_ranking.append(user.id)

        author_ranking: list[str] = []
        for match in messages:
            author = match.item.author
            if author is None or author.id in author_ranking:
                continue
            by_id.setdefault(author.id, author)
            author_ranking.append(author.id)

        fused = reciprocal_rank_fusion([name_ranking, author_ranking])
        return [
            PersonHit(
                user=by_id[user_id],
                score=score,
                status=presence_status(by_id[user_id].last_seen_at, now),
            )
            for user_id, score in fused[: settings.search_people_limit]
        ]
