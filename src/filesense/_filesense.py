"""FileSense — async facade wiring search, graph, entropy, suggestions and safe ops."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel, select

from filesense.config import FileSenseConfig
from filesense.entropy.service import EntropyService
from filesense.exceptions import EmbeddingUnavailableError
from filesense.graph.builder import GraphBuilder
from filesense.graph.hasher import ContentHasher
from filesense.graph.store import GraphStore
from filesense.models.edges import FileEdge
from filesense.models.embeddings import FileEmbedding
from filesense.models.entropy import EntropyScore
from filesense.models.files import FileRecord
from filesense.models.hashes import FileContentHash
from filesense.models.suggestions import Suggestion
from filesense.safeops.manager import SafeOpsManager
from filesense.scheduler import CancellationToken, IdleScheduler, PassResult
from filesense.search.embedder import BatchEmbedder
from filesense.search.embedding_client import EmbeddingClient
from filesense.search.ranker import HybridRanker
from filesense.suggestions.engine import SuggestionEngine

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncEngine

    from filesense.entropy.service import DirectoryScore
    from filesense.graph.analyzers import AnalyzerKind
    from filesense.graph.types import DuplicatePair, GraphStats, RelatedFile
    from filesense.models.suggestions import SuggestionKind, SuggestionStatus
    from filesense.safeops.oplog import OperationLog
    from filesense.search.protocols import EmbeddingProvider
    from filesense.search.types import EmbeddingCoverage, EmbeddingStats, SearchResponse

logger = logging.getLogger(__name__)

_TABLES = [
    m.__table__  # type: ignore[attr-defined]
    for m in (FileRecord, FileContentHash, FileEmbedding, FileEdge, EntropyScore, Suggestion)
]


class FileSense:
    """Async facade over one file-index database.

    The ``file_records`` table is filled by an external indexer; FileSense
    reads it and maintains everything derived from it::

        fs = FileSense(config=FileSenseConfig())
        await fs.create_tables()
        response = await fs.search("quarterly report")
        await fs.run_pass()
        for s in await fs.list_suggestions():
            ...
        await fs.close()

    Pass *engine* (or *session_factory*) to share a database with the
    indexer; otherwise ``<data_dir>/filesense.db`` is used.
    """

    def __init__(
        self,
        engine: AsyncEngine | None = None,
        *,
        session_factory: Callable[..., AsyncSession] | None = None,
        config: FileSenseConfig | None = None,
        embedding_provider: EmbeddingProvider | None = None,
    ) -> None:
        if engine is not None and session_factory is not None:
            raise ValueError("Provide engine or session_factory, not both")
        self._config = config or FileSenseConfig()
        self._closed = False

        self._owns_engine = engine is None and session_factory is None
        if self._owns_engine:
            data_dir = Path(self._config.staging.data_dir)
            data_dir.mkdir(parents=True, exist_ok=True)
            engine = create_async_engine(f"sqlite+aiosqlite:///{data_dir / 'filesense.db'}")
        self._engine = engine
        if session_factory is None:
            session_factory = async_sessionmaker(
                engine, class_=AsyncSession, expire_on_commit=False
            )
        self._session_factory = session_factory

        self._owns_provider = embedding_provider is None
        self._provider: EmbeddingProvider = embedding_provider or EmbeddingClient(
            self._config.embedding
        )

        # Subsystems
        self._ranker = HybridRanker(
            session_factory,
            self._provider,
            self._config.ranker,
            embedding_deadline=self._config.embedding.request_deadline,
        )
        self._embedder = BatchEmbedder(session_factory, self._provider, self._config.embedding)
        self._hasher = ContentHasher(session_factory, self._config.graph)
        self._store = GraphStore(session_factory)
        self._builder = GraphBuilder(session_factory, self._store, self._config.graph)
        self._entropy = EntropyService(session_factory, self._config.entropy)
        self._suggestions = SuggestionEngine(session_factory, self._config.suggestions)
        self._safeops = SafeOpsManager(session_factory, self._config.staging)
        self._scheduler = IdleScheduler(self.run_pass, self._config.scheduler)

    async def create_tables(self) -> None:
        """Create any missing filesense tables (no-op for existing ones)."""
        if self._engine is None:
            raise ValueError("create_tables needs an engine; none was given")
        async with self._engine.begin() as conn:
            await conn.run_sync(
                lambda c: SQLModel.metadata.create_all(c, tables=_TABLES, checkfirst=True)
            )

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
        self, query: str, limit: int = 10, *, drive_id: str | None = None
    ) -> SearchResponse:
        return await self._ranker.search(query, limit, drive_id=drive_id)

    async def embed_pending(self, cancel: CancellationToken | None = None) -> EmbeddingStats:
        """Embed files whose embedding is missing or stale."""
        return await self._embedder.run(cancel)

    async def embedding_coverage(self) -> EmbeddingCoverage:
        return await self._embedder.coverage()

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------

    async def compute_graph_edges(
        self,
        kinds: list[AnalyzerKind] | None = None,
        *,
        include_similarity: bool = True,
        cancel: CancellationToken | None = None,
    ) -> GraphStats:
        """Refresh fingerprints, then run the edge analyzers."""
        await self._hasher.refresh(cancel)
        return await self._builder.run(kinds, include_similarity=include_similarity, cancel=cancel)

    async def related(self, file_id: int, depth: int = 1, limit: int = 20) -> list[RelatedFile]:
        return await self._store.related(file_id, depth, limit)

    async def duplicates(self) -> list[DuplicatePair]:
        return await self._store.duplicates()

    async def duplicate_groups(self) -> list[list[int]]:
        return await self._store.duplicate_groups()

    # ------------------------------------------------------------------
    # Entropy
    # ------------------------------------------------------------------

    async def score_directory(self, directory: str) -> DirectoryScore:
        return await self._entropy.score_directory(directory)

    async def score_file(self, file_id: int) -> DirectoryScore | None:
        return await self._entropy.score_file(file_id)

    async def entropy(self, subject_id: str) -> EntropyScore | None:
        """Last persisted score for a directory path or file path."""
        return await self._entropy.get(subject_id)

    # ------------------------------------------------------------------
    # Suggestions
    # ------------------------------------------------------------------

    async def list_suggestions(
        self,
        status: SuggestionStatus | None = None,
        kind: SuggestionKind | None = None,
        limit: int = 100,
    ) -> list[Suggestion]:
        return await self._suggestions.list_suggestions(status, kind, limit)

    async def get_suggestion(self, suggestion_id: int) -> Suggestion:
        return await self._suggestions.get(suggestion_id)

    async def dismiss(self, suggestion_id: int) -> Suggestion:
        return await self._suggestions.dismiss(suggestion_id)

    async def defer(self, suggestion_id: int, until: datetime | None = None) -> Suggestion:
        return await self._suggestions.defer(suggestion_id, until)

    async def accept(self, suggestion_id: int) -> Suggestion:
        """Carry out a suggestion through staging; see :class:`SafeOpsManager`."""
        return await self._safeops.accept(suggestion_id)

    async def undo(self, suggestion_id: int) -> Suggestion:
        return await self._safeops.undo(suggestion_id)

    async def purge_expired(self, now: datetime | None = None) -> list[Path]:
        """Delete staging directories past the retention window."""
        return await self._safeops.purge_expired(now)

    # ------------------------------------------------------------------
    # Background pass
    # ------------------------------------------------------------------

    async def run_pass(self, cancel: CancellationToken | None = None) -> PassResult:
        """One maintenance pass: hash, embed, edges, scores and suggestions.

        Cancellation is checked between stages and between directories;
        each directory's score and suggestions commit together, so a
        cancelled pass leaves only whole directories behind.
        """
        cancel = cancel or CancellationToken()

        await self._hasher.refresh(cancel)
        if cancel.cancelled:
            return PassResult(cancelled=True)

        embeddings_ok = True
        try:
            await self._embedder.run(cancel)
        except EmbeddingUnavailableError:
            embeddings_ok = False
            logger.warning("Embedding endpoint unavailable; skipping embeddings this pass")
        if cancel.cancelled:
            return PassResult(cancelled=True)

        await self._builder.run(include_similarity=embeddings_ok, cancel=cancel)
        if cancel.cancelled:
            return PassResult(cancelled=True)

        graph = await self._store.load_graph()
        groups = graph.duplicate_groups()
        group_records = await self._group_records(groups)
        duplicate_ids = graph.duplicate_ids()
        connected_ids = graph.connected_ids()
        directories = await self._entropy.directories()
        throttle = self._config.scheduler.throttle_seconds

        done = 0
        for directory in directories:
            if cancel.cancelled:
                logger.info("Pass cancelled after %d/%d directories", done, len(directories))
                return PassResult(len(directories), done, cancelled=True)
            async with self._session_factory() as session:
                records = await self._entropy.files_in(session, directory)
                score = self._entropy.compute_directory(
                    directory,
                    records,
                    graph,
                    duplicate_ids=duplicate_ids,
                    connected_ids=connected_ids,
                )
                await self._entropy.save(session, score)
                drafts = self._suggestions.evaluate(score, records, groups, group_records)
                await self._suggestions.persist(session, drafts)
                await session.commit()
            done += 1
            if throttle > 0:
                await asyncio.sleep(throttle)

        await self._suggestions.reactivate_expired_deferrals()
        logger.info("Pass complete: %d directories scored", done)
        return PassResult(len(directories), done)

    async def _group_records(self, groups: list[list[int]]) -> dict[int, FileRecord]:
        ids = sorted({fid for group in groups for fid in group})
        if not ids:
            return {}
        async with self._session_factory() as session:
            result = await session.execute(select(FileRecord).where(FileRecord.id.in_(ids)))
            return {r.id: r for r in result.scalars().all()}  # type: ignore[misc]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        await self._scheduler.stop()
        if self._owns_provider and hasattr(self._provider, "close"):
            await self._provider.close()  # type: ignore[union-attr]
        if self._owns_engine and self._engine is not None:
            await self._engine.dispose()

    async def __aenter__(self) -> FileSense:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> FileSenseConfig:
        return self._config

    @property
    def scheduler(self) -> IdleScheduler:
        return self._scheduler

    @property
    def operation_log(self) -> OperationLog:
        return self._safeops.oplog
