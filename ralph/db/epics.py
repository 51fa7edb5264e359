"""
Epic repository.

CRUD over the epics table. Deletes are soft by default: deleted_at is set
and the epic drops out of find_all() until restored.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select, update

from ralph.db.models import Epic
from ralph.db.session import Database

logger = logging.getLogger(__name__)


class EpicRepository:
    def __init__(self, db: Database):
        self.db = db

    def create(self, title: str, description: str) -> int:
        """Insert an epic and return its id.

        Raises:
            ValueError: If title is empty
            StorageError: If the insert fails
        """
        if not title:
            raise ValueError("Epic title must not be empty")

        with self.db.session() as session:
            epic = Epic(title=title, description=description, progress_log="")
            session.add(epic)
            session.flush()
            epic_id = epic.id

        if epic_id is None:
            raise RuntimeError("Failed to create epic: no id after insert")
        logger.info(f"[DB] Created epic {epic_id}: {title}")
        return epic_id

    def find_by_id(self, epic_id: int) -> Optional[Epic]:
        with self.db.session() as session:
            return session.get(Epic, epic_id)

    def find_all(self, include_deleted: bool = False) -> list[Epic]:
        stmt = select(Epic).order_by(Epic.created_at, Epic.id)
        if not include_deleted:
            stmt = stmt.where(Epic.deleted_at.is_(None))
        with self.db.session() as session:
            return list(session.scalars(stmt))

    def update(
        self,
        epic_id: int,
        title: Optional[str] = None,
        description: Optional[str] = None,
        progress_log: Optional[str] = None,
    ) -> None:
        """Update the given fields; fields left as None are untouched."""
        values = {}
        if title is not None:
            if not title:
                raise ValueError("Epic title must not be empty")
            values["title"] = title
        if description is not None:
            values["description"] = description
        if progress_log is not None:
            values["progress_log"] = progress_log
        if not values:
            return

        with self.db.session() as session:
            session.execute(update(Epic).where(Epic.id == epic_id).values(**values))

    def soft_delete(self, epic_id: int) -> None:
        with self.db.session() as session:
            session.execute(update(Epic).where(Epic.id == epic_id).values(deleted_at=datetime.now()))
        logger.info(f"[DB] Soft-deleted epic {epic_id}")

    def restore(self, epic_id: int) -> None:
        with self.db.session() as session:
            session.execute(update(Epic).where(Epic.id == epic_id).values(deleted_at=None))

    def hard_delete(self, epic_id: int) -> None:
        with self.db.session() as session:
            session.execute(delete(Epic).where(Epic.id == epic_id))
        logger.info(f"[DB] Deleted epic {epic_id}")
