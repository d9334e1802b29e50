from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.models import Message, PresenceStatus, User
from app.search import cosine_similarity, reciprocal_rank_fusion
from app.services.embeddings import chunk_text, embedding_text, is_text_attachment
from app.services.presence import presence_status, touch_last_seen


def test_cosine_similarity() -> None:
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 1.0], [-1.0, -1.0]) == pytest.approx(-1.0)


def test_cosine_similarity_of_degenerate_vectors_is_zero() -> None:
    assert cosine_similarity([], []) == 0.0
    assert cosine_similarity([1.0], [1.0, 0.0]) == 0.0
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0


def test_reciprocal_rank_fusion_sums_reciprocal_ranks() -> None:
    fused = reciprocal_rank_fusion([["a", "b", "c"], ["b", "a"]])

    assert fused == [("a", 1.5), ("b", 1.5), ("c", pytest.approx(1 / 3))]


def test_reciprocal_rank_fusion_favours_repeated_keys() -> None:
    fused = reciprocal_rank_fusion([["x", "y", "y", "y"]])

    assert [key for key, _ in fused] == ["y", "x"]
    assert dict(fused)["y"] == pytest.approx(1 / 2 + 1 / 3 + 1 / 4)


def test_presence_thresholds() -> None:
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    assert presence_status(None, now) is PresenceStatus.OFFLINE
    assert presence_status(now - timedelta(minutes=5), now) is PresenceStatus.ONLINE
    assert presence_status(now - timedelta(minutes=6), now) is PresenceStatus.AWAY
    assert presence_status(now - timedelta(minutes=30), now) is PresenceStatus.AWAY
    assert presence_status(now - timedelta(minutes=31), now) is PresenceStatus.OFFLINE


def test_presence_accepts_naive_timestamps() -> None:
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    assert presence_status(datetime(2024, 5, 1, 11, 58), now) is PresenceStatus.ONLINE


def test_touch_last_seen_is_throttled(db_session) -> None:
    user = User(username="dana", email="dana@example.com")
    db_session.add(user)
    db_session.commit()
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    assert touch_last_seen(user, db_session, now) is True
    assert touch_last_seen(user, db_session, now + timedelta(seconds=10)) is False
    assert touch_last_seen(user, db_session, now + timedelta(minutes=2)) is True


def test_chunk_text_windows_overlap() -> None:
    chunks = chunk_text("abcdefghij", size=4, overlap=1)

    assert chunks == ["abcd", "defg", "ghij"]


def test_chunk_text_of_blank_input() -> None:
    assert chunk_text("   \n ", size=10, overlap=2) == []
    assert chunk_text("short", size=100, overlap=10) == ["short"]


def test_text_attachment_detection() -> None:
    assert is_text_attachment("report.csv", None)
    assert is_text_attachment("blob", "text/plain; charset=utf-8")
    assert is_text_attachment("data", "application/json")
    assert not is_text_attachment("photo.png", "image/png")


def test_embedding_text_falls_back_to_attachment_names() -> None:
    message = Message(content="", attachments=[{"id": "c/1.pdf", "name": "q3.pdf", "url": "/x"}])

    assert embedding_text(message) == "q3.pdf"
    assert embedding_text(Message(content="hello", attachments=[])) == "hello"
