"""
Engine and session factory.

Creates the SQLite engine, enables WAL unless disabled, and creates the
tables on startup.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ralph.db.models import Base

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """A database operation failed."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.message = message
        self.cause = cause
        super().__init__(message + (f": {cause}" if cause else ""))


class Database:
    """Owns the engine; hands out sessions that commit or roll back."""

    def __init__(self, url: str, disable_wal: bool = False):
        self.url = url
        in_memory = url in ("sqlite://", "sqlite:///:memory:")

        if not in_memory and url.startswith("sqlite:///"):
            Path(url[len("sqlite:///"):]).expanduser().parent.mkdir(parents=True, exist_ok=True)

        if in_memory:
            # One shared connection, otherwise each session sees an empty database
            self.engine = create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_engine(url)

        if not disable_wal and not in_memory:
            event.listen(self.engine, "connect", _enable_wal)

        self._sessions = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_tables(self) -> None:
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StorageError("Failed to create tables", e) from e
        logger.debug(f"[DB] Tables ready at {self.url}")

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Transactional session scope. SQLAlchemy errors become StorageError."""
        session = self._sessions()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError("Database error", e) from e
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


def _enable_wal(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def open_database(url: str, disable_wal: bool = False) -> Database:
    """Create the engine and make sure the tables exist."""
    db = Database(url, disable_wal=disable_wal)
    db.create_tables()
    return db
