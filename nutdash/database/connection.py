"""
Provides database session management for FastAPI and async context managers.
"""
from contextlib import asynccontextmanager
import logging
import anyio
from . import engine

logger = logging.getLogger(__name__)


def _new_session():
    if engine.SessionLocal is None:
        raise RuntimeError("Database is not initialized; call init_db() first")
    return engine.SessionLocal()


@asynccontextmanager
async def get_db_session():
    """Async context manager for database sessions."""
    session = _new_session()
    try:
        logger.debug("DB session opened")
        yield session
        # Use anyio.to_thread.run_sync for sync methods
        await anyio.to_thread.run_sync(session.commit)
        logger.debug("DB session committed")
    except Exception:
        await anyio.to_thread.run_sync(session.rollback)
        logger.exception("DB session rolled back due to error")
        raise
    finally:
        await anyio.to_thread.run_sync(session.close)
        logger.debug("DB session closed")
