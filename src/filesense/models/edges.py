"""FileEdge model — single table for every relationship kind."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


class EdgeKind(StrEnum):
    """Closed set of relationship kinds produced by the analyzers."""

    SIMILAR = "similar"
    CO_MODIFIED = "co_modified"
    REFERENCES = "references"
    SIBLING = "sibling"
    DUPLICATE = "duplicate"

    @property
    def symmetric(self) -> bool:
        """Symmetric kinds are stored once, with ``source_id < target_id``."""
        return self is not EdgeKind.REFERENCES


class FileEdge(SQLModel, table=True):
    """A directed edge between two indexed files.

    At most one row exists per ``(source_id, target_id, kind)``;
    recomputation updates ``strength`` and ``metadata_json`` in place.
    """

    __tablename__ = "file_edges"
    __table_args__ = (UniqueConstraint("source_id", "target_id", "kind", name="uq_file_edges"),)

    id: int | None = Field(default=None, primary_key=True)
    source_id: int = Field(index=True)
    target_id: int = Field(index=True)
    kind: str = Field(index=True)
    strength: float = Field(default=1.0)
    metadata_json: str = Field(default="{}")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
