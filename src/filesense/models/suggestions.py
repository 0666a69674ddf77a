"""Suggestion model — persisted cleanup proposals and their lifecycle."""

from __future__ import annotations

import hashlib
import json
from datetime import UTC, datetime
from enum import StrEnum

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class SuggestionKind(StrEnum):
    ARCHIVE = "archive"
    DEDUPLICATE = "deduplicate"
    FLATTEN = "flatten"
    RENAME = "rename"
    ORGANIZE = "organize"


class SuggestionStatus(StrEnum):
    PENDING = "pending"
    DISMISSED = "dismissed"
    DEFERRED = "deferred"
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    REVERTED = "reverted"


OPEN_STATUSES: frozenset[str] = frozenset(
    {SuggestionStatus.PENDING, SuggestionStatus.DEFERRED, SuggestionStatus.ACCEPTED}
)
"""Statuses under which a repeated detection is a no-op."""


def suggestion_fingerprint(kind: str, paths: list[str]) -> str:
    """Stable identity of a suggestion: its kind plus the sorted affected paths."""
    payload = json.dumps([str(kind), sorted(paths)], separators=(",", ":"))
    return hashlib.sha256(payload.encode()).hexdigest()


class Suggestion(SQLModel, table=True):
    """A proposed cleanup action.  Completed rows are kept as an audit trail."""

    __tablename__ = "suggestions"

    id: int | None = Field(default=None, primary_key=True)
    kind: str = Field(index=True)
    subject: str = Field(default="")
    affected_paths_json: str = Field(default="[]")
    reason: str = Field(default="")
    confidence: float = Field(default=0.0)
    space_savings_bytes: int = Field(default=0)
    status: str = Field(default=SuggestionStatus.PENDING, index=True)
    fingerprint: str = Field(default="", index=True)
    deferred_until: datetime | None = Field(
        default=None,
        sa_type=DateTime(timezone=True),
    )
    kept_paths_json: str = Field(default="{}")
    """For ``deduplicate``: each redundant path mapped to the copy that is kept."""
    staging_dir: str | None = Field(default=None)
    last_error: str | None = Field(default=None)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_type=DateTime(timezone=True),
    )

    @property
    def affected_paths(self) -> list[str]:
        return list(json.loads(self.affected_paths_json))

    @property
    def kept_paths(self) -> dict[str, str]:
        return dict(json.loads(self.kept_paths_json or "{}"))
