"""GraphBuilder — one edge computation pass over every analyzer."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import TYPE_CHECKING

from sqlmodel import select

from filesense.config import GraphConfig
from filesense.graph.analyzers import AnalysisContext, AnalyzerKind, FileSnapshot, run_analyzer
from filesense.graph.types import GraphStats, graph_stats
from filesense.models.edges import EdgeKind
from filesense.models.embeddings import FileEmbedding, decode_vector
from filesense.models.files import FileRecord
from filesense.models.hashes import FileContentHash

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from filesense.graph.store import GraphStore
    from filesense.scheduler import CancellationToken

logger = logging.getLogger(__name__)


class GraphBuilder:
    """Runs the analyzers against committed rows and upserts their edges.

    Each analyzer's output is committed on its own; an analyzer that
    raises is logged and skipped without affecting the others.  Stored
    edges an analyzer stops emitting (a file was edited, a reference
    removed) are deleted once that analyzer has run cleanly.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncSession],
        store: GraphStore,
        config: GraphConfig | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._store = store
        self._config = config or GraphConfig()

    async def build_context(self, *, with_embeddings: bool = True) -> AnalysisContext:
        """Snapshot files, fingerprints and (optionally) embeddings."""
        async with self._session_factory() as session:
            records = (await session.execute(select(FileRecord))).scalars().all()
            files = [FileSnapshot.from_record(r) for r in records]
            fingerprints = {
                row[0]: row[1]
                for row in (
                    await session.execute(
                        select(FileContentHash.file_id, FileContentHash.fingerprint)
                    )
                ).all()
            }
            embeddings = {}
            if with_embeddings:
                result = await session.execute(select(FileEmbedding.file_id, FileEmbedding.vector))
                embeddings = {row[0]: decode_vector(row[1]) for row in result.all()}
        return AnalysisContext(
            files=files, fingerprints=fingerprints, embeddings=embeddings, config=self._config
        )

    async def run(
        self,
        kinds: Iterable[AnalyzerKind] | None = None,
        *,
        include_similarity: bool = True,
        cancel: CancellationToken | None = None,
    ) -> GraphStats:
        """Run *kinds* (default: all), drop edges nobody re-emitted, then prune.

        With ``include_similarity=False`` the embedding-based analyzer is
        skipped, as when the embedding endpoint was unavailable this pass.
        """
        selected = list(kinds) if kinds is not None else list(AnalyzerKind)
        if not include_similarity:
            selected = [k for k in selected if not k.needs_embeddings]

        context = await self.build_context(
            with_embeddings=any(k.needs_embeddings for k in selected)
        )
        counts: dict[str, int] = {}
        failed: list[str] = []
        succeeded: set[AnalyzerKind] = set()
        emitted: dict[EdgeKind, set[tuple[int, int]]] = defaultdict(set)
        for kind in selected:
            if cancel is not None and cancel.cancelled:
                logger.info("Edge computation cancelled before %s", kind)
                return graph_stats(counts, failed)
            try:
                candidates = await asyncio.to_thread(run_analyzer, kind, context)
                counts[kind] = await self._store.upsert_edges(candidates)
            except Exception:
                logger.warning("Analyzer %s failed", kind, exc_info=True)
                failed.append(str(kind))
                continue
            succeeded.add(kind)
            for candidate in candidates:
                emitted[candidate.kind].add((candidate.source_id, candidate.target_id))

        removed = await self._remove_stale(succeeded, emitted)
        pruned = await self._store.prune_edges(self._config.prune_below)
        stats = graph_stats(counts, failed, pruned, removed)
        logger.info(
            "Edge pass: %d edges upserted, %d stale removed, %d pruned, %d analyzers failed",
            stats.total_edges,
            removed,
            pruned,
            len(failed),
        )
        return stats

    async def _remove_stale(
        self,
        succeeded: set[AnalyzerKind],
        emitted: dict[EdgeKind, set[tuple[int, int]]],
    ) -> int:
        """Delete stored edges that the analyzers which ran no longer emit.

        A kind is reconciled only when every analyzer able to emit it ran
        cleanly.  Without the similarity analyzer, ``duplicate`` edges that
        carry a content fingerprint are still reconciled against the
        duplicate analyzer's output.
        """
        removed = 0
        for edge_kind in EdgeKind:
            producers = {a for a in AnalyzerKind if edge_kind in a.edge_kinds}
            if producers <= succeeded:
                removed += await self._store.delete_stale_edges(edge_kind, emitted[edge_kind])
            elif edge_kind is EdgeKind.DUPLICATE and AnalyzerKind.DUPLICATE in succeeded:
                removed += await self._store.delete_stale_edges(
                    edge_kind, emitted[edge_kind], metadata_key="fingerprint"
                )
        return removed
