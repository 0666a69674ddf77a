"""FileRecord model — the base file index, owned by the external indexer.

filesense only ever reads this table.  Every other table references a
record by its integer ``id``; nothing here creates or deletes rows.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class FileRecord(SQLModel, table=True):
    """One indexed file on one storage root (``drive_id``)."""

    __tablename__ = "file_records"

    id: int | None = Field(default=None, primary_key=True)
    path: str = Field(index=True, unique=True)
    name: str = Field(default="")
    extension: str | None = Field(default=None)
    size_bytes: int = Field(default=0)
    modified_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    parent_path: str = Field(default="", index=True)
    drive_id: str = Field(default="", index=True)
    indexed_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
