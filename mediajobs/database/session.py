"""
Database engine and session factory management.

The job store opens one short-lived session per operation from the
factory returned here. SQLite (the default) and PostgreSQL are supported.

Usage:
    from mediajobs.database.session import get_session_factory, init_db

    init_db()
    store = JobStore(get_session_factory())
"""

import logging
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from mediajobs.config.settings import get_settings
from mediajobs.db_base import Base

logger = logging.getLogger(__name__)

# Module-level engine singleton
_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def create_db_engine(database_url: str) -> Engine:
    """
    Create an engine for the given URL.

    SQLite files get their parent directory created and foreign keys on;
    in-memory SQLite uses a StaticPool so every session sees the same data.
    PostgreSQL gets a connection pool with pre-ping.
    """
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
            )
        else:
            engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        _enable_sqlite_foreign_keys(engine)
        return engine

    return create_engine(
        database_url,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Verify connection health
        pool_recycle=1800,   # Recycle connections after 30 minutes
    )


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    from sqlalchemy import event

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def get_engine() -> Engine:
    """Get or create the database engine singleton."""
    global _engine
    if _engine is None:
        database_url = get_settings().database_url
        _engine = create_db_engine(database_url)
        logger.info(
            "Database engine created",
            extra={"backend": make_url(database_url).get_backend_name()},
        )
    return _engine


def get_session_factory() -> sessionmaker:
    """Get or create the session factory singleton."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=get_engine(),
        )
    return _SessionLocal


def init_db(engine: Optional[Engine] = None) -> None:
    """
    Create all tables that do not exist yet.

    Existing tables are not modified.
    """
    # Register job tables with Base.metadata
    import mediajobs.jobs.models  # noqa: F401

    engine = engine or get_engine()
    Base.metadata.create_all(bind=engine)
    logger.info(
        "Database schema ensured",
        extra={"tables": sorted(Base.metadata.tables.keys())},
    )


def dispose_engine() -> None:
    """Dispose the engine singleton (used on shutdown and in tests)."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None
