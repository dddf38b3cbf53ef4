"""
Database session management with connection pooling.

Provides a shared FastAPI dependency for database sessions and a
synchronous generator for jobs.

Usage:
    from office_access.database.session import get_db_session

    @router.get("/offices")
    def list_offices(db: Session = Depends(get_db_session)):
        ...
"""

import logging
from typing import Generator, Optional

from fastapi import HTTPException, status
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from office_access.config.settings import AccessSettings

logger = logging.getLogger(__name__)

# Module-level engine singleton
_engine = None
_SessionLocal: Optional[sessionmaker] = None


def get_engine(settings: Optional[AccessSettings] = None):
    """
    Get or create the database engine singleton.

    pool_pre_ping verifies connections before use; connections are
    recycled after 30 minutes.
    """
    global _engine
    if _engine is None:
        settings = settings or AccessSettings.from_env()
        if not settings.database_url:
            logger.error("Failed to create database engine", extra={"error": "DATABASE_URL not set"})
            raise ValueError("DATABASE_URL environment variable is not set")

        _engine = create_engine(
            settings.database_url,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        logger.info("Database engine created")
    return _engine


def get_session_factory() -> sessionmaker:
    """Get or create the session factory singleton."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=get_engine(),
        )
    return _SessionLocal


def reset_engine() -> None:
    """Dispose of the engine singleton (tests / worker re-forks)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_db_session() -> Generator[Session, None, None]:
    """
    FastAPI dependency for database sessions.

    Commits when the request handler completes, rolls back on error.
    Raises HTTP 503 if the database is not configured.
    """
    try:
        SessionLocal = get_session_factory()
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not configured",
        )

    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db_session_sync() -> Generator[Session, None, None]:
    """
    Synchronous session generator for jobs.

    Usage:
        for session in get_db_session_sync():
            # use session
    """
    try:
        SessionLocal = get_session_factory()
    except ValueError as e:
        raise RuntimeError(f"Database not configured: {e}")

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
