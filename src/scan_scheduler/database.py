"""Engine and session helpers shared by the daemon and scan handler processes."""

import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base

logger = logging.getLogger(__name__)


def _configure_sqlite(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine for the scan queue database.

    In-memory SQLite uses a single shared connection; file-backed SQLite is
    switched to WAL so handler processes can write while the daemon reads.

    Args:
        database_url: SQLAlchemy database URL
        echo: Log emitted SQL

    Returns:
        SQLAlchemy Engine
    """
    if database_url.startswith("sqlite"):
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            return create_engine(
                database_url,
                echo=echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        engine = create_engine(
            database_url, echo=echo, connect_args={"check_same_thread": False}
        )
        event.listen(engine, "connect", _configure_sqlite)
        return engine

    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Create a session factory bound to the engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create all scheduler tables that do not exist yet."""
    Base.metadata.create_all(engine)


def reset_engine_after_fork(engine: Engine) -> None:
    """Drop pooled connections inherited from the parent process.

    Uses close=False so the parent's live connections are neither reused
    nor shut down from the child; the child opens fresh connections on
    first use.
    """
    engine.dispose(close=False)
    logger.debug(f"Connection pool reset in forked process for {engine.url!r}")
