"""
Storage - Database.

============================================================
RESPONSIBILITY
============================================================
Creates the SQLAlchemy engine and session factory for the
snapshot store.

- DATABASE_URL selects the backend (PostgreSQL in production)
- Falls back to a local SQLite file for development
- Creates the schema on startup

============================================================
"""

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from core.exceptions import PersistenceError
from storage.models.base import Base

# Registers ProtocolStateSnapshot on Base.metadata
import storage.models.state_snapshot  # noqa: F401


logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///twb_indexer.db"


def get_database_url() -> str:
    """Get database URL from environment."""
    load_dotenv()
    url = os.getenv("DATABASE_URL")
    if url and url.startswith("postgresql+asyncpg"):
        # Snapshot store uses a sync driver
        url = url.replace("postgresql+asyncpg", "postgresql")

    if not url:
        url = DEFAULT_DATABASE_URL
        logger.warning(f"DATABASE_URL not set, using default: {url}")

    return url


def _safe_url(url: str) -> str:
    return url.split("@")[-1]


def create_database_engine(
    database_url: Optional[str] = None,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_recycle: int = 1800,
    echo: bool = False,
) -> Engine:
    """
    Create SQLAlchemy engine.

    Args:
        database_url: Connection URL (defaults to DATABASE_URL)
        pool_size: Connections kept in pool (server databases only)
        max_overflow: Connections beyond pool_size
        pool_recycle: Recycle connections after N seconds
        echo: Log SQL statements
    """
    url = database_url or get_database_url()
    logger.info(f"Creating database engine for: {_safe_url(url)}")

    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=echo, **kwargs)

    return create_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_recycle=pool_recycle,
        pool_pre_ping=True,
        echo=echo,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


def init_schema(engine: Engine) -> None:
    """
    Verify connectivity and create missing tables.

    Raises:
        PersistenceError: If the database cannot be reached
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        Base.metadata.create_all(engine)
    except OperationalError as e:
        raise PersistenceError(f"Cannot initialize database: {e}", cause=e) from e
    logger.info("Database schema ready")
