"""
Database connection and session management for the SQLite archive.
"""

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Optional
import logging

from config import DATABASE_URL

logger = logging.getLogger(__name__)


def _enable_foreign_keys(dbapi_connection, connection_record):
    # SQLite leaves FK enforcement (and ON DELETE CASCADE) off by default
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str = DATABASE_URL, echo: bool = False) -> Engine:
    """
    Create an engine for the archive database.

    In-memory SQLite URLs get a StaticPool so every session (and every
    worker thread) sees the same database.
    """
    kwargs = {"echo": echo}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool

    new_engine = create_engine(database_url, **kwargs)
    if database_url.startswith("sqlite"):
        event.listen(new_engine, "connect", _enable_foreign_keys)
    return new_engine


# Default engine and session factory
engine = build_engine()
SessionFactory = sessionmaker(bind=engine)


def build_session_factory(bind: Engine) -> sessionmaker:
    """Session factory bound to a specific engine (tests, alternate archives)."""
    return sessionmaker(bind=bind)


def get_session() -> Session:
    """Get a new database session."""
    return SessionFactory()


def test_connection(bind: Optional[Engine] = None) -> bool:
    """Test database connection and return True if successful."""
    try:
        with (bind or engine).connect() as connection:
            return connection.execute(text("SELECT 1")).scalar() == 1
    except Exception as e:
        logger.error(f"Database connection test failed: {e}")
        return False


def create_tables(bind: Optional[Engine] = None):
    """Create all tables defined in the ORM models.

    Args:
        bind: Optional engine. The module-level engine is used when omitted.
    """
    try:
        from db.models.models import Base
        Base.metadata.create_all(bind or engine)
        logger.info("All tables created successfully")
    except Exception as e:
        logger.error(f"Failed to create tables: {e}")
        raise
