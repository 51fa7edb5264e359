"""
ORM models.

epics holds saved specifications; epic_drafts holds at most one row, the
autosaved wizard state.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, Text, func, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

__all__ = ["Base", "Epic", "EpicDraft"]


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )


class Epic(TimestampMixin, Base):
    __tablename__ = "epics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    # The generated specification
    description: Mapped[str] = mapped_column(Text, nullable=False)
    progress_log: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("''"), default="")

    # Soft delete (NULL = live)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"Epic(id={self.id}, title={self.title!r})"


class EpicDraft(Base):
    __tablename__ = "epic_drafts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # JSON-encoded wizard state
    wizard_step: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    spec_content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    session_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    feedback: Mapped[str] = mapped_column(Text, nullable=False, default="")
    open_questions: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    question_answers: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    current_question_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    custom_input_mode: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )
