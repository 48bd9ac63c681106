"""Database session management.

The connection pool is shared by every tenant. Isolation comes from the
query predicates in the scope resolver and content fetchers, never from
per-tenant connections.
"""

from contextlib import contextmanager
from typing import Callable, ContextManager, Generator
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool

from copilot_gateway.infra.config import config


# Create engine with connection pooling
engine = create_engine(
    config.DATABASE_URL,
    poolclass=QueuePool,
    pool_size=10,  # Number of connections to maintain
    max_overflow=20,  # Max connections beyond pool_size
    pool_timeout=30,  # Seconds to wait for connection from pool
    pool_recycle=3600,  # Recycle connections after 1 hour
    pool_pre_ping=True,  # Verify connections before using
    echo=config.DEBUG,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Factory returning a session context manager; services accept one of these
# so tests can point them at a different engine.
SessionScope = Callable[[], ContextManager[Session]]


def make_session_scope(factory: sessionmaker) -> SessionScope:
    """Build a session scope helper bound to a sessionmaker."""

    @contextmanager
    def session_scope() -> Generator[Session, None, None]:
        session = factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return session_scope


get_db_session = make_session_scope(SessionLocal)


def get_db() -> Generator[Session, None, None]:
    """Dependency for FastAPI routes."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
