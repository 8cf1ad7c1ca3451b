# control-plane/database/session.py
"""
Database engine and session management

SQLite (development, tests) runs on a single shared connection with foreign
keys enforced. Server databases run every transaction at
DB_ISOLATION_LEVEL, so a route resolution sees rules, assignments and
topology from one snapshot.
"""

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from typing import Generator
import logging

from config import settings
from .models import Base

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # ON DELETE CASCADE (hub -> spokes, gateway -> session configs) relies on it
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(url: str) -> Engine:
    """Build the engine for a database URL"""
    if url.startswith("sqlite"):
        sqlite_engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=settings.DEBUG,
        )
        event.listen(sqlite_engine, "connect", _enable_sqlite_foreign_keys)
        return sqlite_engine

    return create_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
        isolation_level=settings.DB_ISOLATION_LEVEL,
        echo=settings.DEBUG,
    )


engine = create_db_engine(settings.DATABASE_URL)
if settings.is_sqlite and settings.is_production:
    logger.warning("SQLite in production: route resolution has no snapshot isolation")

# expire_on_commit stays on: managers re-read rows after their single commit
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)


def init_db() -> None:
    """Create missing tables (application startup)"""
    logger.info(f"Initializing database ({engine.dialect.name})...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database initialized successfully")


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency for FastAPI
    Usage: db: Session = Depends(get_db)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class DatabaseManager:
    """Health checks and maintenance"""

    @staticmethod
    def check_connection() -> bool:
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database connection check failed: {e}")
            return False

    @staticmethod
    def drop_all_tables() -> None:
        """Drop every table (tests and local resets only)"""
        logger.warning(f"Dropping all tables on {engine.url.render_as_string(hide_password=True)}")
        Base.metadata.drop_all(bind=engine)


db_manager = DatabaseManager()
