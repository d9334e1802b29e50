"""Embedding generation for messages and their text attachments."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import PurePosixPath
from typing import Any, Protocol, Sequence

from fastapi import HTTPException, status
from openai import AsyncOpenAI, OpenAIError
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.config import get_settings
from app.core.storage import resolve_path
from app.models import FileChunk, Message
from app.monitoring.metrics import embedding_requests_total

logger = logging.getLogger(__name__)

settings = get_settings()

_TEXT_SUFFIXES = frozenset(
    {".txt", ".md", ".markdown", ".csv", ".json", ".log", ".yaml", ".yml", ".xml", ".html", ".py", ".rst"}
)
_TEXT_CONTENT_TYPES = frozenset({"application/json", "application/xml", "application/x-yaml"})


class Embedder(Protocol):
    """Anything able to turn text into fixed-size float vectors."""

    async def embed(self, text: str) -> list[float]:
        ...

    async def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        ...


class EmbeddingError(RuntimeError):
    """Raised when the embeddings provider rejects or fails a request."""


class OpenAIEmbedder:
    """Embedder backed by the OpenAI embeddings endpoint."""

    def __init__(self, api_key: str, model: str) -> None:
        self._client = AsyncOpenAI(api_key=api_key)
        self._model = model

    async def embed(self, text: str) -> list[float]:
        vectors = await self.embed_many([text])
        return vectors[0]

    async def embed_many(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            response = await self._client.embeddings.create(
                model=self._model,
                input=list(texts),
                encoding_format="float",
            )
        except OpenAIError as exc:
            raise EmbeddingError(str(exc)) from exc
        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in ordered]


@lru_cache
def _openai_embedder(api_key: str, model: str) -> OpenAIEmbedder:
    return OpenAIEmbedder(api_key, model)


def get_embedder() -> Embedder:
    """FastAPI dependency returning the configured embedder."""

    if not settings.openai_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Embeddings are not configured",
        )
    return _openai_embedder(settings.openai_api_key, settings.embedding_model)


def chunk_text(text: str, size: int, overlap: int) -> list[str]:
    """Split text into windows of ``size`` characters sharing ``overlap`` characters."""

    cleaned = text.strip()
    if not cleaned:
        return []
    step = max(1, size - max(0, overlap))
    chunks = []
    for start in range(0, len(cleaned), step):
        piece = cleaned[start : start + size].strip()
        if piece:
            chunks.append(piece)
        if start + size >= len(cleaned):
            break
    return chunks


def is_text_attachment(name: str, content_type: str | None) -> bool:
    if content_type:
        if content_type.startswith("text/") or content_type.split(";", 1)[0] in _TEXT_CONTENT_TYPES:
            return True
    return PurePosixPath(name).suffix.lower() in _TEXT_SUFFIXES


def embedding_text(message: Message) -> str:
    """Text embedded for a message; attachment names stand in for empty content."""

    if message.content.strip():
        return message.content
    names = [str(item.get("name", "")) for item in message.attachments or []]
    return " ".join(name for name in names if name)


@dataclass(slots=True)
class EmbeddingReport:
    processed: int = 0
    failed: int = 0
    chunks: int = 0


async def _index_attachment(
    db: Session, message: Message, attachment: dict[str, Any], embedder: Embedder
) -> int:
    path = str(attachment.get("id") or "")
    name = str(attachment.get("name") or PurePosixPath(path).name)
    content_type = attachment.get("content_type")
    if not path or not is_text_attachment(name, content_type):
        return 0
    text = resolve_path(path).read_bytes().decode("utf-8", errors="replace")
    pieces = chunk_text(text, settings.file_chunk_size, settings.file_chunk_overlap)
    if not pieces:
        return 0
    vectors = await embedder.embed_many(pieces)
    db.execute(delete(FileChunk).where(FileChunk.message_id == message.id, FileChunk.file_path == path))
    for index, (piece, vector) in enumerate(zip(pieces, vectors, strict=True)):
        db.add(
            FileChunk(
                message_id=message.id,
                file_path=path,
                file_name=name,
                content_type=content_type,
                chunk_index=index,
                content=piece,
                embedding=vector,
            )
        )
    return len(pieces)


async def embed_message(db: Session, message: Message, embedder: Embedder) -> int:
    """Store the message embedding and index its text attachments.

    Attachment indexing is best effort: a file that cannot be read or
    embedded is logged and skipped. Returns the number of chunks indexed.
    """

    text = embedding_text(message)
    if text:
        message.embedding = await embedder.embed(text)
        db.add(message)
    chunks = 0
    for attachment in message.attachments or []:
        try:
            chunks += await _index_attachment(db, message, attachment, embedder)
        except (HTTPException, OSError, EmbeddingError):
            embedding_requests_total.labels("file", "failed").inc()
            logger.warning(
                "Skipping attachment %s of message %s during indexing",
                attachment.get("id"),
                message.id,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
    db.commit()
    embedding_requests_total.labels("message", "ok").inc()
    return chunks


async def embed_pending(db: Session, embedder: Embedder, *, limit: int | None = None) -> EmbeddingReport:
    """Backfill embeddings for every message that does not have one yet."""

    stmt = select(Message).where(Message.embedding.is_(None)).order_by(Message.created_at)
    if limit is not None:
        stmt = stmt.limit(limit)
    report = EmbeddingReport()
    for message in db.execute(stmt).scalars().all():
        if not embedding_text(message):
            continue
        try:
            report.chunks += await embed_message(db, message, embedder)
        except EmbeddingError:
            db.rollback()
            report.failed += 1
            embedding_requests_total.labels("message", "failed").inc()
            logger.exception("Failed to embed message %s", message.id)
            continue
        report.processed += 1
    return report
