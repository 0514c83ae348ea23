"""
Core Module - Database Engine.

============================================================
RESPONSIBILITY
============================================================
SQLAlchemy engine and session management for the SQL-backed
repositories in credit_risk and settlement.

- One Database object per process, constructed at startup
- Explicit transaction boundaries (commit or roll back)
- SQLite in-memory URLs are supported for tests

============================================================
"""

import logging
import os
from contextlib import contextmanager
from typing import Generator, Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .exceptions import ConfigurationError, EngineError


logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///credit_settlement.db"


# =============================================================
# DECLARATIVE BASE
# =============================================================

class Base(DeclarativeBase):
    """Base class for ORM models."""
    pass


class DatabasePersistenceError(EngineError):
    """A database transaction failed."""

    error_kind = "persistence_error"


# =============================================================
# DATABASE
# =============================================================

def get_database_url() -> str:
    """Get database URL from environment."""
    load_dotenv()
    url = os.getenv("DATABASE_URL")
    if not url:
        logger.warning(f"DATABASE_URL not set, using default: {DEFAULT_DATABASE_URL}")
        url = DEFAULT_DATABASE_URL
    return url


class Database:
    """
    Owns the SQLAlchemy engine and session factory.
    """

    def __init__(self, url: str, echo: bool = False):
        """
        Initialize database.

        Args:
            url: SQLAlchemy database URL
            echo: Log SQL statements
        """
        if not url:
            raise ConfigurationError("Database URL is empty", config_key="DATABASE_URL")

        self._url = url
        self._engine = self._create_engine(url, echo)
        self._session_factory = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

        logger.info(f"Database engine created for: {url.split('@')[-1]}")

    @classmethod
    def from_env(cls, echo: bool = False) -> "Database":
        """Create database from DATABASE_URL."""
        return cls(get_database_url(), echo=echo)

    @classmethod
    def in_memory(cls) -> "Database":
        """Create a throwaway SQLite in-memory database."""
        return cls("sqlite://")

    @staticmethod
    def _create_engine(url: str, echo: bool) -> Engine:
        if url.startswith("sqlite"):
            kwargs = {"connect_args": {"check_same_thread": False}}
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
            return create_engine(url, echo=echo, future=True, **kwargs)

        return create_engine(
            url,
            echo=echo,
            future=True,
            pool_size=10,
            max_overflow=20,
            pool_recycle=1800,
        )

    @property
    def engine(self) -> Engine:
        """Underlying SQLAlchemy engine."""
        return self._engine

    def get_session(self) -> Session:
        """
        Get a new session.

        Caller is responsible for committing/closing; prefer session_scope().
        """
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Transaction boundary.

        Commits only if no exception occurs, rolls back on any exception.
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Database transaction failed, rolling back: {e}")
            session.rollback()
            raise DatabasePersistenceError(f"Transaction failed: {e}", cause=e) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def verify_connection(self) -> bool:
        """Run SELECT 1 against the database."""
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            return True
        except OperationalError as e:
            logger.error(f"Database connection failed: {e}")
            raise DatabasePersistenceError(f"Cannot connect to database: {e}", cause=e) from e

    def create_all(self) -> None:
        """Create every table registered on Base."""
        # Register ORM models
        import credit_risk.models  # noqa: F401
        import settlement.models  # noqa: F401

        Base.metadata.create_all(bind=self._engine)
        logger.info("Database tables created")

    def dispose(self, reason: Optional[str] = None) -> None:
        """Dispose the connection pool."""
        self._engine.dispose()
        logger.info(f"Database disposed{f': {reason}' if reason else ''}")
