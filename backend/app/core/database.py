"""Database engine, session factory and declarative base.

The transcoding worker blocks on FFmpeg for the whole attempt, so both the
API and the worker share one synchronous engine.
"""

from collections.abc import Iterator
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from app.core.config import settings


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def create_db_engine(database_url: str) -> Engine:
    """Create an engine for the given URL.

    SQLite needs ``check_same_thread`` disabled because FastAPI runs sync
    dependencies in a threadpool.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)


_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def get_engine() -> Engine:
    """Get the lazily created application engine."""
    global _engine
    if _engine is None:
        _engine = create_db_engine(settings.DATABASE_URL)
    return _engine


def get_session_factory() -> sessionmaker:
    """Get the application session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_engine(), expire_on_commit=False, class_=Session
        )
    return _session_factory


def get_db() -> Iterator[Session]:
    """FastAPI dependency yielding a session that is always closed."""
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()


def init_db(engine: Optional[Engine] = None) -> None:
    """Create all tables known to the declarative base."""
    # Import models so they register on Base.metadata
    from app.modules.transcoding import models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())
