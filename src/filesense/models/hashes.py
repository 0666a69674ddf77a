"""FileContentHash model — content fingerprints for duplicate detection."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class FileContentHash(SQLModel, table=True):
    __tablename__ = "file_content_hashes"

    id: int | None = Field(default=None, primary_key=True)
    file_id: int = Field(index=True, unique=True)
    fingerprint: str = Field(index=True)
    computed_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
