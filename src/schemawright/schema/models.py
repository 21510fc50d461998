"""SQLAlchemy ORM model for the migration history table.

One row per applied migration batch. Rows are only ever appended.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

HISTORY_TABLE = "schemawright_migrations"


def utc_now() -> datetime:
    """Current UTC time, naive, as stored in the history table."""
    return datetime.now(UTC).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for Schemawright's own tables."""

    pass


class MigrationHistory(Base):
    """An applied migration batch."""

    __tablename__ = HISTORY_TABLE

    version: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    steps: Mapped[str] = mapped_column(Text, nullable=False)  # JSON list of steps
    applied_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)

    def __repr__(self) -> str:
        return f"<MigrationHistory version={self.version} name={self.name!r}>"
