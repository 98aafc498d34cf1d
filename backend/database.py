"""
SQLite database setup for the channel catalog.
Uses SQLAlchemy with synchronous sessions; the async store wraps them.
"""
import logging
from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from config import CONFIG_DIR

logger = logging.getLogger(__name__)

# Default database file location
CATALOG_DB_FILE = CONFIG_DIR / "catalog.db"

# SQLAlchemy Base for model declarations
Base = declarative_base()

# Engine and session factory (initialized on startup)
_engine = None
_SessionLocal = None


def get_database_url(db_file: Optional[Path] = None) -> str:
    """Get the SQLite database URL."""
    return f"sqlite:///{db_file or CATALOG_DB_FILE}"


def _enable_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_catalog_engine(database_url: str):
    """Create an engine with SQLite-specific settings and foreign keys enforced."""
    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,  # Set to True for SQL debugging
    )
    event.listen(engine, "connect", _enable_foreign_keys)
    return engine


def init_db(db_file: Optional[Path] = None) -> None:
    """Initialize the database, creating tables if they don't exist."""
    global _engine, _SessionLocal

    try:
        target = Path(db_file) if db_file else CATALOG_DB_FILE
        target.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"Initializing catalog database at {target}")
        _engine = create_catalog_engine(get_database_url(target))

        # expire_on_commit=False: rows are converted to dataclasses after commit
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine, expire_on_commit=False)

        # Import models to register them with Base
        import models  # noqa: F401

        Base.metadata.create_all(bind=_engine)
        logger.debug("Database tables created/verified")

        logger.info("Catalog database initialized successfully")
    except Exception as e:
        logger.exception(f"Failed to initialize database: {e}")
        raise


def get_session():
    """Get a database session. Use as context manager or close manually."""
    if _SessionLocal is None:
        logger.error("Attempted to get database session before initialization")
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _SessionLocal()


def get_session_factory():
    """Get the session factory (used to build a SqlLibraryStore)."""
    if _SessionLocal is None:
        logger.error("Attempted to get session factory before initialization")
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _SessionLocal


def get_engine():
    """Get the database engine."""
    if _engine is None:
        logger.error("Attempted to get database engine before initialization")
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine
