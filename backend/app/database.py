from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from app.config import get_settings

settings = get_settings()

_engine_options: dict[str, Any] = {"echo": settings.debug, "future": True, "pool_pre_ping": True}
if not settings.database_url.startswith("sqlite"):
    # pool_size: number of connections to maintain persistently
    # max_overflow: additional connections that can be created on demand
    _engine_options.update(pool_size=10, max_overflow=20)

engine = create_engine(settings.database_url, **_engine_options)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> sessionmaker[Session]:
    """Dependency returning the session factory for long-lived handlers."""

    return SessionLocal


@contextmanager
def get_db_session(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """Context manager for short-lived database sessions.

    Use this in WebSocket handlers instead of Depends(get_db) to avoid
    holding database connections for the entire WebSocket connection lifetime.
    """
    db = (factory or SessionLocal)()
    try:
        yield db
    finally:
        db.close()
