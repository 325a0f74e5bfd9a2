"""Database setup and session utilities for SQLAlchemy.

This module centralizes engine/session initialization, metadata base, and helpers:
- Base: declarative base shared by the ORM models.
- Database: owns one engine + session factory; ``init`` ensures the pgvector
  extension exists on PostgreSQL and creates the required tables.
- Database.session_scope: Context-managed transactional scope for imperative workflows.

Engines are constructed explicitly from a URL (normally
schemeqa.config.settings.DATABASE_URL) and passed to the components that need them.
"""
import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

logger = logging.getLogger(__name__)

Base = declarative_base()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Engine and session factory for one database URL.

    Args:
        url: SQLAlchemy database URL.
        echo: Whether to log emitted SQL.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        kwargs = {"pool_pre_ping": True, "future": True, "echo": echo}
        if url.startswith("sqlite"):
            # Usage-stat writes happen on worker threads.
            kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
        self.engine: Engine = create_engine(url, **kwargs)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine, future=True
        )

    @property
    def is_postgres(self) -> bool:
        return self.engine.dialect.name == "postgresql"

    def init(self) -> None:
        """Initialize database extensions and tables.

        Ensures the pgvector extension is available on PostgreSQL and creates
        tables from SQLAlchemy metadata. The embedding column is an
        unconstrained ``vector`` so a scheme re-embedded under a new provider
        can coexist with stale rows until they are replaced; search is a
        brute-force scan, so no ANN index is created.

        This function is idempotent and safe to run multiple times.
        """
        if self.is_postgres:
            with self.engine.connect() as conn:
                conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
                conn.commit()

        # Import models after Base is defined
        from schemeqa import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)
        logger.info("Database initialized (dialect=%s)", self.engine.dialect.name)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations.

        Yields:
            Session: A SQLAlchemy session bound to the configured engine.

        Notes:
            - Commits on successful exit.
            - Rolls back and re-raises on exception.
            - Always closes the session at the end.
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()

