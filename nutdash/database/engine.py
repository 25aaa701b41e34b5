"""
Database engine configuration for synchronous SQLite access.
"""
import logging
import os
import os.path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

engine = None
SessionLocal = None
logger = logging.getLogger(__name__)


def init_db(db_path: str):
    """Initializes the database engine and session factory.

    ``:memory:`` keeps a single shared connection so every session sees the
    same database.
    """
    global engine, SessionLocal
    logger.info("Initializing SQLite database at %s", db_path)

    if db_path == ":memory:":
        engine = create_engine(
            "sqlite+pysqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            future=True,
        )
    else:
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        engine = create_engine(
            f"sqlite+pysqlite:///{db_path}",
            connect_args={"check_same_thread": False, "timeout": 30.0},
            pool_pre_ping=True,
            future=True,
        )

    SessionLocal = sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    logger.info("Database engine initialized")


def ensure_schema() -> None:
    """Create database tables if they do not exist yet.

    This is safe to run repeatedly.
    """
    if engine is None:
        raise RuntimeError("Database is not initialized; call init_db() first")
    from .models import Base
    Base.metadata.create_all(engine)
    logger.info("Database schema ensured (create_all executed)")


def is_initialized() -> bool:
    return SessionLocal is not None
