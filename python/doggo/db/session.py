"""Sessions and transactions.

Sessions are synchronous; async code reaches them through
``run_in_threadpool``. Routes get one per request from ``get_db``; the
worker and the streaming pipeline open their own with ``session_scope``.
Services commit through ``transaction`` so a failed write never leaves a
session half-flushed.
"""

from collections.abc import Generator, Iterator
from contextlib import contextmanager

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from doggo.db.engine import get_engine

_factory: sessionmaker[Session] | None = None


def create_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    """Sessions bound to ``engine`` (the settings engine if None).

    Objects stay usable after commit: responses are rendered from rows the
    service just committed.
    """
    return sessionmaker(
        bind=engine or get_engine(),
        autoflush=False,
        expire_on_commit=False,
    )


def get_session_factory() -> sessionmaker[Session]:
    global _factory
    if _factory is None:
        _factory = create_session_factory()
    return _factory


def set_session_factory(factory: sessionmaker[Session] | None) -> None:
    """Install a factory (tests, alternate engines); None restores the default."""
    global _factory
    _factory = factory


@contextmanager
def session_scope() -> Iterator[Session]:
    """A session from the current factory, closed on exit. Does not commit."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request."""
    with session_scope() as db:
        yield db


@contextmanager
def transaction(db: Session) -> Iterator[None]:
    """Commit on success; roll back and re-raise on any exception.

    Example:
        with transaction(db):
            db.add(row)
    """
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise
