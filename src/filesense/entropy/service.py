"""EntropyService — computes and persists per-directory and per-file scores."""

from __future__ import annotations

import logging
import os
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from sqlmodel import select

from filesense.config import EntropyConfig
from filesense.dialect import upsert_rows
from filesense.entropy.scorers import (
    age_spread,
    composite_score,
    depth_waste,
    duplicate_ratio,
    naming_entropy,
    orphan_score,
)
from filesense.graph._rustworkx import FileGraph
from filesense.models.entropy import EntropyScore
from filesense.models.files import FileRecord
from filesense.utils import utcnow

if TYPE_CHECKING:
    from collections.abc import Callable, Collection

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def _ancestors(directory: str, root: Path | None) -> list[str]:
    """*directory* and each parent up to and including *root*."""
    path = Path(directory)
    chain = [directory]
    if root is None or root not in path.parents:
        return chain
    for parent in path.parents:
        chain.append(str(parent))
        if parent == root:
            break
    return chain


@dataclass(frozen=True, slots=True)
class DirectoryScore:
    """The five dimensions of one subject plus their composite."""

    subject_id: str
    subject_kind: str
    naming_entropy: float
    age_spread: float
    depth_waste: float
    duplicate_ratio: float
    orphan_score: float
    composite: float
    file_count: int

    def as_row(self) -> dict:
        return {
            "subject_id": self.subject_id,
            "subject_kind": self.subject_kind,
            "naming_entropy": self.naming_entropy,
            "age_spread": self.age_spread,
            "depth_waste": self.depth_waste,
            "duplicate_ratio": self.duplicate_ratio,
            "orphan_score": self.orphan_score,
            "composite": self.composite,
            "file_count": self.file_count,
            "computed_at": utcnow(),
        }


class EntropyService:
    """Scores directories (and single files) for organisational entropy.

    ``compute_*`` methods read only; ``save`` stages the upsert on a caller
    session so a directory's score and its suggestions commit together.
    ``score_*`` methods do both in their own transaction.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncSession],
        config: EntropyConfig | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config or EntropyConfig()

    async def directories(self) -> list[str]:
        """Directories to score in a pass, sorted.

        Every directory holding an indexed file, plus its ancestors up to
        the drive's storage root, so single-child chains above the files
        are measured too.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(FileRecord.drive_id, FileRecord.parent_path).distinct()
            )
            by_drive: dict[str, set[str]] = defaultdict(set)
            for drive_id, parent in result.all():
                by_drive[drive_id].add(parent)

        directories: set[str] = set()
        for drive_id, parents in by_drive.items():
            root = self._storage_root(drive_id, parents)
            for parent in parents:
                directories.update(_ancestors(parent, root))
        return sorted(directories)

    def _storage_root(self, drive_id: str, parents: set[str]) -> Path | None:
        configured = self._config.storage_roots.get(drive_id)
        if configured is not None:
            return Path(configured)
        try:
            return Path(os.path.commonpath(sorted(parents)))
        except ValueError:
            return None

    async def files_in(self, session: AsyncSession, directory: str) -> list[FileRecord]:
        result = await session.execute(
            select(FileRecord).where(FileRecord.parent_path == directory).order_by(FileRecord.id)
        )
        return list(result.scalars().all())

    def compute_directory(
        self,
        directory: str,
        records: list[FileRecord],
        graph: FileGraph,
        *,
        duplicate_ids: Collection[int] | None = None,
        connected_ids: Collection[int] | None = None,
    ) -> DirectoryScore:
        """Score *directory* from its *records* and the edge *graph*.

        A pass scoring many directories against one graph passes the
        graph's *duplicate_ids* and *connected_ids*, computed once.
        """
        ids = [r.id for r in records]
        if duplicate_ids is None:
            duplicate_ids = graph.duplicate_ids()
        if connected_ids is None:
            connected_ids = graph.connected_ids()
        dims = (
            naming_entropy([r.name for r in records]),
            age_spread([r.modified_at for r in records], self._config.age_ceiling_seconds),
            depth_waste(directory, self._config.max_depth_probe),
            duplicate_ratio(ids, duplicate_ids),
            orphan_score(ids, connected_ids),
        )
        return DirectoryScore(
            directory,
            "directory",
            *dims,
            composite=composite_score(dims, self._config.weights),
            file_count=len(records),
        )

    def compute_file(self, record: FileRecord, graph: FileGraph) -> DirectoryScore:
        """Per-file score: only the duplicate and orphan dimensions apply."""
        fid = record.id
        dims = (
            0.0,
            0.0,
            0.0,
            1.0 if fid in graph.duplicate_ids() else 0.0,
            0.0 if graph.degree(fid) > 0 else 1.0,  # type: ignore[arg-type]
        )
        return DirectoryScore(
            record.path,
            "file",
            *dims,
            composite=composite_score(dims, self._config.weights),
            file_count=1,
        )

    @staticmethod
    async def save(session: AsyncSession, score: DirectoryScore) -> None:
        """Stage the upsert of *score*; the caller commits."""
        await upsert_rows(session, EntropyScore, [score.as_row()], ["subject_id"])

    async def score_directory(
        self, directory: str, graph: FileGraph | None = None
    ) -> DirectoryScore:
        """Compute and persist the score of *directory* in one transaction."""
        async with self._session_factory() as session:
            if graph is None:
                graph = await FileGraph.from_sql(session)
            records = await self.files_in(session, directory)
            score = self.compute_directory(directory, records, graph)
            await self.save(session, score)
            await session.commit()
        logger.debug("Scored %s: composite %.3f", directory, score.composite)
        return score

    async def score_file(
        self, file_id: int, graph: FileGraph | None = None
    ) -> DirectoryScore | None:
        """Compute and persist the score of one file; None if it is not indexed."""
        async with self._session_factory() as session:
            record = await session.get(FileRecord, file_id)
            if record is None:
                return None
            if graph is None:
                graph = await FileGraph.from_sql(session)
            score = self.compute_file(record, graph)
            await self.save(session, score)
            await session.commit()
        return score

    async def get(self, subject_id: str) -> EntropyScore | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(EntropyScore).where(EntropyScore.subject_id == subject_id)
            )
            return result.scalar_one_or_none()
