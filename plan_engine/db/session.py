from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager

from loguru import logger
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from plan_engine.config.settings import settings
from plan_engine.errors import PlanEngineError

# Lazy initialization to avoid import-time database connections
_engine = None
_SessionLocal = None


def _get_engine():
    """Get or create the database engine (lazy initialization)."""
    global _engine
    if _engine is None:
        is_sqlite = "sqlite" in settings.database_url.lower()
        connect_args = {"check_same_thread": False} if is_sqlite else {"connect_timeout": 10, "application_name": "plan-engine"}
        _engine = create_engine(
            settings.database_url,
            connect_args=connect_args,
            echo=False,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
        logger.info("Database engine initialized", sqlite=is_sqlite)
    return _engine


def get_engine():
    """Get or create the database engine (public API)."""
    return _get_engine()


def _get_session_local():
    """Get or create the session factory (lazy initialization)."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_get_engine())
    return _SessionLocal


def init_db() -> None:
    """Create all tables (local development and CLI bootstrap)."""
    from plan_engine.db.models import Base

    Base.metadata.create_all(bind=_get_engine())
    logger.info("Database schema created")


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Get database session context manager.

    Commits when the block exits cleanly. Any exception rolls back:
    - PlanEngineError: expected domain failure, logged at debug
    - Other exceptions: logged as database errors
    """
    session = _get_session_local()()
    try:
        yield session
        session.commit()
    except PlanEngineError as e:
        logger.debug(f"Domain error in session, rolling back: {e.code}")
        session.rollback()
        raise
    except Exception as e:
        logger.error(f"Database session error, rolling back: {type(e).__name__}: {e}")
        session.rollback()
        raise
    finally:
        session.close()
