"""Embedding generation and semantic search endpoints."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from huddle.sync.reactions import aggregate_reactions

from app.api.channels import serialize_attachments, serialize_user
from app.api.deps import get_current_user
from app.core.storage import describe_file_type, public_url
from app.database import get_db
from app.models import Message, User
from app.monitoring.metrics import search_requests_total
from app.schemas import (
    EmbeddingRequest,
    EmbeddingResult,
    ReactionSummaryRead,
    SearchFile,
    SearchMessage,
    SearchPerson,
    SearchReply,
    SearchResponse,
)
from app.search import SearchOutcome, SemanticSearchService
from app.services.embeddings import Embedder, EmbeddingError, embed_message, embed_pending, get_embedder

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/embeddings", tags=["embeddings"])


def _summaries(message: Message) -> list[ReactionSummaryRead]:
    return [ReactionSummaryRead(**summary.to_dict()) for summary in aggregate_reactions(message.reactions)]


def _search_reply(message: Message) -> SearchReply:
    return SearchReply(
        id=message.id,
        channel_id=message.channel_id,
        user_id=message.user_id,
        parent_message_id=message.parent_message_id,
        content=message.content,
        attachments=serialize_attachments(message),
        created_at=message.created_at,
        updated_at=message.updated_at,
        author=serialize_user(message.author),
        reactions=_summaries(message),
    )


def _search_response(query: str, outcome: SearchOutcome) -> SearchResponse:
    messages = [
        SearchMessage(
            **_search_reply(match.item).model_dump(),
            similarity=match.similarity,
            replies=[_search_reply(reply) for reply in match.item.replies],
        )
        for match in outcome.messages
    ]
    files = [
        SearchFile(
            file_path=hit.file_path,
            file_name=hit.file_name,
            content_type=hit.content_type,
            file_type=describe_file_type(hit.file_name, hit.content_type),
            url=public_url(hit.file_path),
            score=hit.score,
            similarity=hit.similarity,
            excerpt=hit.excerpt,
            message_id=hit.message.id,
            channel_id=hit.message.channel_id,
            shared_by=serialize_user(hit.message.author),
            shared_at=hit.message.created_at,
        )
        for hit in outcome.files
    ]
    people = [
        SearchPerson(
            **serialize_user(hit.user).model_dump(),
            score=hit.score,
            status=hit.status,
            last_seen_at=hit.user.last_seen_at,
        )
        for hit in outcome.people
    ]
    return SearchResponse(query=query, messages=messages, files=files, people=people)


@router.post("", response_model=EmbeddingResult)
async def generate_embeddings(
    payload: EmbeddingRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    embedder: Embedder = Depends(get_embedder),
) -> EmbeddingResult:
    """Embed one message, or backfill every message still missing a vector."""

    if payload.message_id is None:
        report = await embed_pending(db, embedder)
        logger.info(
            "Embedding backfill by %s: %s processed, %s failed",
            current_user.id,
            report.processed,
            report.failed,
        )
        return EmbeddingResult(processed=report.processed, failed=report.failed, chunks=report.chunks)

    message = db.get(Message, payload.message_id)
    if message is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    try:
        chunks = await embed_message(db, message, embedder)
    except EmbeddingError as exc:
        db.rollback()
        logger.exception("Failed to embed message %s", message.id)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Embedding provider request failed",
        ) from exc
    return EmbeddingResult(processed=1, chunks=chunks)


@router.get("/search", response_model=SearchResponse)
async def search(
    query: str = Query("", description="Free text query"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    embedder: Embedder = Depends(get_embedder),
) -> SearchResponse:
    """Rank messages, shared files and people against the query."""

    text = query.strip()
    if not text:
        search_requests_total.labels("rejected").inc()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Query is required")

    service = SemanticSearchService(db, embedder, viewer=current_user)
    try:
        outcome = await service.search(text, now=datetime.now(timezone.utc))
    except EmbeddingError as exc:
        search_requests_total.labels("failed").inc()
        logger.exception("Search embedding failed")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Embedding provider request failed",
        ) from exc
    search_requests_total.labels("ok").inc()
    return _search_response(text, outcome)
