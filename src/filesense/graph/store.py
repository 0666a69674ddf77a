"""GraphStore — persisted edge operations over ``file_edges``."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, or_
from sqlmodel import select

from filesense.dialect import upsert_rows
from filesense.graph._rustworkx import FileGraph
from filesense.graph.types import DuplicatePair, RelatedFile
from filesense.models.edges import EdgeKind, FileEdge
from filesense.models.files import FileRecord
from filesense.utils import utcnow

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from filesense.graph.analyzers._base import EdgeCandidate

logger = logging.getLogger(__name__)

_UPDATE_KEYS = ["strength", "metadata_json", "updated_at"]


class GraphStore:
    """Upserts, prunes and queries file edges.

    Every method opens its own session; writes commit before returning.
    Read methods tolerate an empty edge table and return empty results.
    """

    def __init__(self, session_factory: Callable[..., AsyncSession]) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_edges(self, candidates: Iterable[EdgeCandidate]) -> int:
        """Insert or update edges keyed on ``(source_id, target_id, kind)``.

        Self-loops, edges touching unknown files and edges that cross
        storage roots are rejected.  Returns the number of edges written.
        """
        keyed: dict[tuple[int, int, str], EdgeCandidate] = {}
        for candidate in candidates:
            edge = candidate.normalized()
            if edge.source_id == edge.target_id:
                continue
            keyed[(edge.source_id, edge.target_id, str(edge.kind))] = edge
        if not keyed:
            return 0

        ids = {fid for source, target, _ in keyed for fid in (source, target)}
        async with self._session_factory() as session:
            drives = await self._drives(session, ids)
            now = utcnow()
            rows = []
            for (source, target, kind), edge in keyed.items():
                if source not in drives or target not in drives:
                    logger.debug("Edge %s→%s skipped: unknown file", source, target)
                    continue
                if drives[source] != drives[target]:
                    logger.debug("Edge %s→%s skipped: crosses storage roots", source, target)
                    continue
                rows.append(
                    {
                        "source_id": source,
                        "target_id": target,
                        "kind": kind,
                        "strength": max(0.0, min(1.0, float(edge.strength))),
                        "metadata_json": json.dumps(edge.metadata, sort_keys=True),
                        "created_at": now,
                        "updated_at": now,
                    }
                )
            await upsert_rows(
                session,
                FileEdge,
                rows,
                ["source_id", "target_id", "kind"],
                update_keys=_UPDATE_KEYS,
            )
            await session.commit()
        return len(rows)

    async def prune_edges(self, min_strength: float) -> int:
        """Delete every edge weaker than *min_strength*.  Returns the count."""
        async with self._session_factory() as session:
            result = await session.execute(
                sa_delete(FileEdge).where(FileEdge.strength < min_strength)
            )
            await session.commit()
        pruned = result.rowcount or 0
        if pruned:
            logger.info("Pruned %d edges below strength %.2f", pruned, min_strength)
        return pruned

    async def delete_stale_edges(
        self,
        kind: EdgeKind,
        keep: Iterable[tuple[int, int]],
        *,
        metadata_key: str | None = None,
    ) -> int:
        """Delete *kind* edges whose ``(source_id, target_id)`` is not in *keep*.

        With *metadata_key*, only edges whose metadata carries that key are
        candidates; the rest are left to the analyzer that wrote them.
        Returns the number of edges deleted.
        """
        kept = set(keep)
        async with self._session_factory() as session:
            result = await session.execute(
                select(FileEdge.id, FileEdge.source_id, FileEdge.target_id, FileEdge.metadata_json)
                .where(FileEdge.kind == kind)
            )
            stale = [
                edge_id
                for edge_id, source, target, metadata in result.all()
                if (source, target) not in kept
                and (metadata_key is None or metadata_key in json.loads(metadata or "{}"))
            ]
            if stale:
                await session.execute(sa_delete(FileEdge).where(FileEdge.id.in_(stale)))
                await session.commit()
        if stale:
            logger.info("Removed %d stale %s edges", len(stale), kind)
        return len(stale)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def related(self, file_id: int, depth: int = 1, limit: int = 20) -> list[RelatedFile]:
        """Files within *depth* hops of *file_id*, strongest first.

        Edges are followed in both directions; the neighbourhood is fetched
        one hop at a time, then ranked by :meth:`FileGraph.related`.
        """
        if depth < 1 or limit < 1:
            return []
        async with self._session_factory() as session:
            graph = FileGraph()
            seen: set[int] = {file_id}
            frontier: set[int] = {file_id}
            for _ in range(depth):
                if not frontier:
                    break
                result = await session.execute(
                    select(FileEdge).where(
                        or_(
                            FileEdge.source_id.in_(sorted(frontier)),
                            FileEdge.target_id.in_(sorted(frontier)),
                        )
                    )
                )
                reached: set[int] = set()
                for edge in result.scalars().all():
                    graph.add_edge(
                        edge.source_id, edge.target_id, edge.kind, strength=edge.strength
                    )
                    reached.update((edge.source_id, edge.target_id))
                frontier = reached - seen
                seen |= reached

            ranked = graph.related(file_id, depth=depth, limit=limit)
            if not ranked:
                return []
            records = await self._records(session, {fid for fid, _, _ in ranked})

        return [
            RelatedFile(
                file_id=fid,
                path=records[fid].path,
                name=records[fid].name,
                strength=strength,
                depth=hop,
            )
            for fid, strength, hop in ranked
            if fid in records
        ]

    async def duplicates(self) -> list[DuplicatePair]:
        """Every file pair joined by a ``duplicate`` edge, ordered by ids."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(FileEdge)
                .where(FileEdge.kind == EdgeKind.DUPLICATE)
                .order_by(FileEdge.source_id, FileEdge.target_id)
            )
            edges = list(result.scalars().all())
            if not edges:
                return []
            records = await self._records(
                session, {fid for e in edges for fid in (e.source_id, e.target_id)}
            )
        return [
            DuplicatePair(
                first_id=e.source_id,
                first_path=records[e.source_id].path,
                second_id=e.target_id,
                second_path=records[e.target_id].path,
                strength=e.strength,
            )
            for e in edges
            if e.source_id in records and e.target_id in records
        ]

    async def duplicate_groups(self) -> list[list[int]]:
        """Transitive duplicate groups (connected components), each sorted."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(FileEdge).where(FileEdge.kind == EdgeKind.DUPLICATE)
            )
            graph = FileGraph.from_edges(result.scalars().all())
        return graph.duplicate_groups()

    async def load_graph(self) -> FileGraph:
        """Snapshot of every edge as an in-memory graph."""
        async with self._session_factory() as session:
            return await FileGraph.from_sql(session)

    async def edge_count(self, kind: EdgeKind | None = None) -> int:
        async with self._session_factory() as session:
            stmt = select(func.count()).select_from(FileEdge)
            if kind is not None:
                stmt = stmt.where(FileEdge.kind == kind)
            return (await session.execute(stmt)).scalar_one()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _drives(session: AsyncSession, ids: set[int]) -> dict[int, str]:
        result = await session.execute(
            select(FileRecord.id, FileRecord.drive_id).where(FileRecord.id.in_(sorted(ids)))
        )
        return {row[0]: row[1] for row in result.all()}

    @staticmethod
    async def _records(session: AsyncSession, ids: set[int]) -> dict[int, FileRecord]:
        result = await session.execute(select(FileRecord).where(FileRecord.id.in_(sorted(ids))))
        return {r.id: r for r in result.scalars().all()}  # type: ignore[misc]
