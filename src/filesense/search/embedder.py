"""BatchEmbedder — background pass that keeps file embeddings current."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import func
from sqlmodel import select

from filesense.config import EmbeddingConfig
from filesense.dialect import upsert_rows
from filesense.exceptions import EmbeddingUnavailableError
from filesense.models.embeddings import FileEmbedding, encode_vector
from filesense.models.files import FileRecord
from filesense.search.embedding_client import MAX_BATCH_SIZE, build_embedding_text
from filesense.search.protocols import embed_batch
from filesense.search.types import EmbeddingCoverage, EmbeddingStats
from filesense.utils import is_text_file, sha256_text, utcnow

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from filesense.scheduler import CancellationToken
    from filesense.search.protocols import EmbeddingProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PendingEmbedding:
    """A file whose stored embedding is missing or stale."""

    file_id: int
    text: str
    fingerprint: str


def _read_leading_text(path: str, ceiling: int) -> str | None:
    """Content of a small text file, or None when unreadable or too large."""
    p = Path(path)
    try:
        if p.stat().st_size > ceiling:
            return None
        return p.read_text(encoding="utf-8", errors="ignore")
    except OSError:
        return None


class BatchEmbedder:
    """Embeds files in bounded batches, committing after every batch.

    A file needs (re-)embedding when it has no row, or when the sha256 of
    its composite text or the model name differs from the stored row.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncSession],
        embedding_provider: EmbeddingProvider,
        config: EmbeddingConfig | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._provider = embedding_provider
        self._config = config or EmbeddingConfig()

    @property
    def batch_size(self) -> int:
        return max(1, min(self._config.batch_size, MAX_BATCH_SIZE))

    async def files_needing_embeddings(self, limit: int | None = None) -> list[PendingEmbedding]:
        """Files with no embedding or a stale one, in file-id order."""
        model_name = self._provider.model_name
        async with self._session_factory() as session:
            records = (await session.execute(select(FileRecord).order_by(FileRecord.id))).scalars()
            records = list(records)
            existing = {
                row[0]: (row[1], row[2])
                for row in (
                    await session.execute(
                        select(
                            FileEmbedding.file_id,
                            FileEmbedding.content_fingerprint,
                            FileEmbedding.model_name,
                        )
                    )
                ).all()
            }

        pending: list[PendingEmbedding] = []
        for record in records:
            content = None
            if is_text_file(record.name):
                content = await asyncio.to_thread(
                    _read_leading_text, record.path, self._config.content_ceiling_bytes
                )
            text = build_embedding_text(record, content, max_tokens=self._config.content_tokens)
            fingerprint = sha256_text(text)
            if existing.get(record.id) == (fingerprint, model_name):
                continue
            pending.append(PendingEmbedding(file_id=record.id, text=text, fingerprint=fingerprint))
            if limit is not None and len(pending) >= limit:
                break
        return pending

    async def run(self, cancel: CancellationToken | None = None) -> EmbeddingStats:
        """Embed every pending file (bounded per pass).

        Raises :class:`EmbeddingUnavailableError` on the first failed batch;
        batches committed before it are kept.
        """
        pending = await self.files_needing_embeddings(limit=self._config.max_files_per_pass)
        if not pending:
            return EmbeddingStats()

        embedded = 0
        batches = 0
        size = self.batch_size
        for start in range(0, len(pending), size):
            if cancel is not None and cancel.cancelled:
                logger.info("Embedding pass cancelled after %d files", embedded)
                return EmbeddingStats(embedded=embedded, batches=batches, cancelled=True)

            batch = pending[start : start + size]
            try:
                vectors = await asyncio.wait_for(
                    embed_batch(self._provider, [p.text for p in batch]),
                    timeout=self._config.request_deadline,
                )
            except TimeoutError as e:
                msg = f"Embedding batch exceeded {self._config.request_deadline}s deadline"
                raise EmbeddingUnavailableError(msg) from e

            now = utcnow()
            rows = [
                {
                    "file_id": item.file_id,
                    "vector": encode_vector(vector),
                    "dimensions": len(vector),
                    "model_name": self._provider.model_name,
                    "content_fingerprint": item.fingerprint,
                    "embedded_at": now,
                }
                for item, vector in zip(batch, vectors, strict=True)
            ]
            async with self._session_factory() as session:
                await upsert_rows(session, FileEmbedding, rows, ["file_id"])
                await session.commit()
            embedded += len(rows)
            batches += 1

        logger.info("Embedded %d files in %d batches", embedded, batches)
        return EmbeddingStats(embedded=embedded, batches=batches)

    async def coverage(self) -> EmbeddingCoverage:
        """Count indexed files and how many of them have an embedding."""
        async with self._session_factory() as session:
            total = (
                await session.execute(select(func.count()).select_from(FileRecord))
            ).scalar_one()
            embedded = (
                await session.execute(
                    select(func.count())
                    .select_from(FileEmbedding)
                    .join(FileRecord, FileRecord.id == FileEmbedding.file_id)
                )
            ).scalar_one()
        return EmbeddingCoverage(total_files=total, embedded_files=embedded)
