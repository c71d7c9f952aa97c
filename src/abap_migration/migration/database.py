"""
Database initialization and connection management utilities.

This module provides functions for creating the migration database engine,
creating tables, and opening sessions that commit or roll back as a unit.
"""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine, event, pool, text
from sqlalchemy.orm import Session, sessionmaker

from abap_migration.client.exceptions import ConfigurationError, StateError
from abap_migration.migration.models import Base
from abap_migration.utils.logging import get_logger

logger = get_logger(__name__)


def _enable_sqlite_foreign_keys(dbapi_conn, connection_record):
    """
    Enable foreign key constraints for SQLite connections.

    SQLite has foreign keys disabled by default. This event handler
    enables them for each new connection.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_database_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 3600,
) -> Engine:
    """
    Create a SQLAlchemy engine with appropriate settings.

    Args:
        database_url: Database connection URL (sqlite:/// or postgresql://)
        echo: Whether to log SQL statements
        pool_size: Number of connections to maintain in the pool
        max_overflow: Maximum number of connections beyond pool_size
        pool_timeout: Timeout for getting a connection from the pool (seconds)
        pool_recycle: Recycle connections after this many seconds

    Returns:
        SQLAlchemy Engine instance

    Raises:
        ConfigurationError: If database URL is invalid
    """
    if not database_url:
        raise ConfigurationError("Database URL cannot be empty")

    try:
        is_sqlite = database_url.startswith("sqlite")

        if is_sqlite:
            engine = create_engine(
                database_url,
                echo=echo,
                poolclass=pool.NullPool,
                connect_args={"check_same_thread": False},
            )
            event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        else:
            engine = create_engine(
                database_url,
                echo=echo,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                pool_pre_ping=True,
                pool_recycle=pool_recycle,
            )

        logger.info(
            "database_engine_created",
            database_type="sqlite" if is_sqlite else "server",
            pool_size=pool_size if not is_sqlite else "NullPool",
        )

        return engine

    except Exception as e:
        logger.error("database_engine_failed", error=str(e), database_url=database_url)
        raise ConfigurationError(f"Failed to create database engine: {e}") from e


def init_database(database_url: str, **engine_options) -> sessionmaker:
    """
    Initialize the migration database and return a session factory.

    Creates all tables if they don't exist. This is idempotent and safe
    to call multiple times.

    Args:
        database_url: Database connection URL
        **engine_options: Passed through to create_database_engine

    Returns:
        Session factory bound to the new engine

    Raises:
        ConfigurationError: If database initialization fails
    """
    engine = create_database_engine(database_url, **engine_options)

    try:
        Base.metadata.create_all(engine)
    except Exception as e:
        logger.error("database_init_failed", error=str(e), database_url=database_url)
        raise ConfigurationError(f"Failed to initialize database: {e}") from e

    logger.info(
        "database_initialized",
        database_url=database_url,
        tables=len(Base.metadata.tables),
    )

    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Commits on success, rolls back on exception and always closes the
    session.

    Args:
        session_factory: Factory returned by init_database

    Yields:
        SQLAlchemy Session instance

    Raises:
        StateError: If the database operation fails
    """
    session = session_factory()

    try:
        yield session
        session.commit()

    except StateError:
        session.rollback()
        raise

    except Exception as e:
        session.rollback()
        logger.error("database_session_rolled_back", error=str(e))
        raise StateError(f"Database operation failed: {e}") from e

    finally:
        session.close()


def validate_database_connection(database_url: str) -> bool:
    """
    Validate that a database connection can be established.

    Args:
        database_url: Database connection URL

    Returns:
        True if connection successful, False otherwise
    """
    try:
        engine = create_database_engine(database_url)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        engine.dispose()
        logger.info("database_connection_validated", database_url=database_url)
        return True

    except Exception as e:
        logger.error("database_connection_failed", error=str(e), database_url=database_url)
        return False
