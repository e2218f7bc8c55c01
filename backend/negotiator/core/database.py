"""
Database utilities and connection management.

WHAT: SQLite database setup with WAL mode for saved negotiations and UI settings
WHY: Saved sessions must survive restarts and be continued later
HOW: SQLAlchemy sync engine v2 with WAL mode, session management
"""

from sqlalchemy import create_engine, text, event
from sqlalchemy.orm import sessionmaker, declarative_base
from contextlib import contextmanager
from pathlib import Path

from .config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Ensure data directory exists (file-backed SQLite only)
if settings.DATABASE_URL.startswith("sqlite:///") and ":memory:" not in settings.DATABASE_URL:
    data_dir = Path(settings.DATABASE_URL.replace("sqlite:///", "")).parent
    data_dir.mkdir(parents=True, exist_ok=True)

engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False},  # Auto-save runs from the event loop thread, API from workers
    echo=settings.DEBUG,
    future=True
)


@event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable WAL mode for better concurrency."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


SessionLocal = sessionmaker(
    bind=engine,
    expire_on_commit=False,
    autoflush=False,
    autocommit=False
)

Base = declarative_base()


@contextmanager
def get_db():
    """
    Context manager for database session.

    Usage:
        with get_db() as db:
            db.add(record)

    Yields:
        Session: SQLAlchemy session
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ping_database() -> dict:
    """
    Check database connectivity.

    Returns:
        Dict with status and info
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return {"available": True, "url": settings.DATABASE_URL, "error": None}
    except Exception as e:
        logger.error(f"Database ping failed: {e}")
        return {"available": False, "url": settings.DATABASE_URL, "error": str(e)}


def init_db():
    """Create tables."""
    # Import registers the tables on Base.metadata
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("Database initialized with WAL mode")


def close_db():
    """Close database connections."""
    engine.dispose()
    logger.info("Database connections closed")
