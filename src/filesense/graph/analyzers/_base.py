"""Analyzer contract and shared types."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from filesense.config import GraphConfig
from filesense.models.edges import EdgeKind
from filesense.utils import ensure_utc

if TYPE_CHECKING:
    from collections.abc import Callable

    import numpy as np

    from filesense.models.files import FileRecord


@dataclass(frozen=True, slots=True)
class FileSnapshot:
    """Detached copy of the FileRecord columns the analyzers read."""

    file_id: int
    path: str
    name: str
    extension: str | None
    size_bytes: int
    modified_at: datetime
    parent_path: str
    drive_id: str

    @classmethod
    def from_record(cls, record: FileRecord) -> FileSnapshot:
        return cls(
            file_id=record.id,  # type: ignore[arg-type]
            path=record.path,
            name=record.name,
            extension=record.extension,
            size_bytes=record.size_bytes,
            modified_at=ensure_utc(record.modified_at),
            parent_path=record.parent_path,
            drive_id=record.drive_id,
        )


@dataclass(frozen=True, slots=True)
class EdgeCandidate:
    """An edge proposed by an analyzer, before persistence."""

    source_id: int
    target_id: int
    kind: EdgeKind
    strength: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def normalized(self) -> EdgeCandidate:
        """Order endpoints ``source < target`` for symmetric kinds."""
        if self.kind.symmetric and self.source_id > self.target_id:
            return EdgeCandidate(
                source_id=self.target_id,
                target_id=self.source_id,
                kind=self.kind,
                strength=self.strength,
                metadata=self.metadata,
            )
        return self


@dataclass
class AnalysisContext:
    """Everything an analyzer may look at.

    Built once per pass from committed rows; analyzers never touch the
    database themselves.
    """

    files: list[FileSnapshot]
    fingerprints: dict[int, str] = field(default_factory=dict)
    embeddings: dict[int, np.ndarray] = field(default_factory=dict)
    config: GraphConfig = field(default_factory=GraphConfig)

    def __post_init__(self) -> None:
        self._by_id = {f.file_id: f for f in self.files}

    def get(self, file_id: int) -> FileSnapshot | None:
        return self._by_id.get(file_id)

    def by_directory(self) -> dict[tuple[str, str], list[FileSnapshot]]:
        """Files grouped by ``(drive_id, parent_path)``, each group sorted by id."""
        groups: dict[tuple[str, str], list[FileSnapshot]] = defaultdict(list)
        for snapshot in sorted(self.files, key=lambda f: f.file_id):
            groups[(snapshot.drive_id, snapshot.parent_path)].append(snapshot)
        return dict(groups)

    def by_drive(self) -> dict[str, list[FileSnapshot]]:
        groups: dict[str, list[FileSnapshot]] = defaultdict(list)
        for snapshot in sorted(self.files, key=lambda f: f.file_id):
            groups[snapshot.drive_id].append(snapshot)
        return dict(groups)


type Analyzer = Callable[[AnalysisContext], list[EdgeCandidate]]
"""Pure function from a context to proposed edges.  Never mutates state."""
