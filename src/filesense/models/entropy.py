"""EntropyScore model — one live row per scored directory or file."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class EntropyScore(SQLModel, table=True):
    """Five organisation dimensions plus their weighted composite.

    ``subject_id`` is the directory path (or file path when
    ``subject_kind == "file"``).  Rows are recomputed, never appended.
    """

    __tablename__ = "entropy_scores"

    id: int | None = Field(default=None, primary_key=True)
    subject_id: str = Field(index=True, unique=True)
    subject_kind: str = Field(default="directory")
    naming_entropy: float = Field(default=0.0)
    age_spread: float = Field(default=0.0)
    depth_waste: float = Field(default=0.0)
    duplicate_ratio: float = Field(default=0.0)
    orphan_score: float = Field(default=0.0)
    composite: float = Field(default=0.0)
    file_count: int = Field(default=0)
    computed_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
