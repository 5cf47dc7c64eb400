"""
Database engine and session management
PostgreSQL in staging/prod, SQLite accepted for local development and tests
"""
import logging
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import config

logger = logging.getLogger(__name__)


def create_database_engine(database_url: str):
    """Create an engine with pool settings appropriate for the backend"""
    if database_url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across sessions
        return create_engine(
            database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False,
        )

    return create_engine(
        database_url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        pool_recycle=config.DB_POOL_RECYCLE,
        pool_timeout=config.DB_POOL_TIMEOUT,
        echo=False,
        connect_args={
            "connect_timeout": 10,
            "keepalives": 1,
            "keepalives_idle": 60,
            "keepalives_interval": 10,
            "keepalives_count": 3,
            "application_name": "cms_regen",
            # DB_STATEMENT_TIMEOUT is in milliseconds
            "options": (
                f"-c statement_timeout={config.DB_STATEMENT_TIMEOUT} "
                f"-c idle_in_transaction_session_timeout=20000"
            ),
        },
    )


engine = create_database_engine(config.DATABASE_URL or "sqlite://")

if engine.dialect.name == "sqlite":
    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
else:
    logger.info(
        f"PostgreSQL engine configured: pool_size={config.DB_POOL_SIZE}, "
        f"max_overflow={config.DB_MAX_OVERFLOW}, statement_timeout={config.DB_STATEMENT_TIMEOUT}ms"
    )

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator:
    """
    FastAPI dependency yielding a database session

    Services commit explicitly; anything left uncommitted when the request
    fails is rolled back here.
    """
    db = SessionLocal()
    try:
        yield db
    except SQLAlchemyError:
        logger.error("Database error during request, rolling back", exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()


def init_db():
    """Create tables that do not exist yet (dev convenience; migrations own prod schema)"""
    from .base import Base
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ensured")
