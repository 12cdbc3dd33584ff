"""
Database initialization and session management for KodeGraph.

This module handles SQLite database setup, table creation, and provides
session management utilities for database operations. Engines are cached
per database path so several stores (and tests) can coexist in one process.
"""

import threading
from collections.abc import Generator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine.base import Engine
from sqlmodel import Session, SQLModel, create_engine

from kodegraph.config import DEFAULT_HOME


class DatabaseConfig:
    """Configuration for database setup."""

    def __init__(self, db_path: str | Path | None = None):
        """Initialize database configuration.

        Args:
            db_path: Optional custom database path. Defaults to ~/.kodegraph/graph.sqlite
        """
        if db_path is None:
            self.home_dir = DEFAULT_HOME
            self.db_path = self.home_dir / "graph.sqlite"
        else:
            self.db_path = Path(db_path).expanduser()
            self.home_dir = self.db_path.parent

        self.database_url = f"sqlite:///{self.db_path}"


_engines: dict[str, Engine] = {}
_engines_lock = threading.Lock()


def _set_sqlite_pragmas(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.close()


def get_engine(db_path: str | Path | None = None) -> Engine:
    """Get or create the SQLite engine for a database path.

    Args:
        db_path: Optional custom database path

    Returns:
        SQLAlchemy engine instance
    """
    config = DatabaseConfig(db_path)
    key = str(config.db_path)

    with _engines_lock:
        engine = _engines.get(key)
        if engine is None:
            config.home_dir.mkdir(parents=True, exist_ok=True)
            engine = create_engine(
                config.database_url,
                echo=False,
                connect_args={"check_same_thread": False, "timeout": 30},
            )
            # WAL and foreign keys must be set on every pooled connection
            event.listen(engine, "connect", _set_sqlite_pragmas)
            _engines[key] = engine

    return engine


def create_db_and_tables(db_path: str | Path | None = None) -> None:
    """Create database and all tables.

    Args:
        db_path: Optional custom database path
    """
    from kodegraph import models  # noqa: F401

    engine = get_engine(db_path)
    SQLModel.metadata.create_all(engine)


@contextmanager
def get_session(db_path: str | Path | None = None) -> Generator[Session, None, None]:
    """Get database session context manager.

    Args:
        db_path: Optional custom database path

    Yields:
        SQLModel Session instance

    Example:
        with get_session() as session:
            record = RepositoryRecord(url=url, normalized_url=normalize_url(url))
            session.add(record)
            session.commit()
    """
    engine = get_engine(db_path)

    with Session(engine) as session:
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def close_engine(db_path: str | Path | None = None) -> None:
    """Dispose cached engines.

    Args:
        db_path: Engine to close; all engines when omitted
    """
    with _engines_lock:
        if db_path is None:
            keys = list(_engines)
        else:
            keys = [str(DatabaseConfig(db_path).db_path)]
        for key in keys:
            engine = _engines.pop(key, None)
            if engine is not None:
                engine.dispose()
