"""HybridRanker — fuses lexical, fuzzy and semantic candidate lists."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING

import numpy as np
from sqlmodel import select

from filesense.config import RankerConfig
from filesense.exceptions import EmbeddingUnavailableError
from filesense.models.embeddings import FileEmbedding, decode_vector
from filesense.models.files import FileRecord
from filesense.search.protocols import embed_batch
from filesense.search.similarity import (
    QueryEmbeddingCache,
    cosine_matrix,
    normalize_query,
    reciprocal_rank_fusion,
)
from filesense.search.types import QueryIntent, RankedFile, SearchResponse
from filesense.utils import file_stem, string_similarity

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from filesense.search.protocols import EmbeddingProvider

logger = logging.getLogger(__name__)

_SIGNALS = ("lexical", "fuzzy", "semantic")

_CAMEL_RE = re.compile(r"[a-z0-9][A-Z]")
_EXTENSION_RE = re.compile(r"\w\.[A-Za-z0-9]{1,8}\b")
_TOKEN_SPLIT_RE = re.compile(r"[^0-9a-z]+")
_CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")

_SEMANTIC_MIN_WORDS = 3


def classify_intent(query: str) -> QueryIntent:
    """Decide whether *query* looks like a filename or natural language.

    Filename-like: a path separator, an extension, or (without spaces) a
    dot, underscore, hyphen or camelCase boundary.  Three or more words
    of anything else is semantic; the rest is hybrid.
    """
    text = query.strip()
    if not text:
        return QueryIntent.HYBRID
    if "/" in text or "\\" in text or _EXTENSION_RE.search(text):
        return QueryIntent.FILENAME
    if " " not in text and (
        any(ch in text for ch in "._-") or _CAMEL_RE.search(text)
    ):
        return QueryIntent.FILENAME
    if len(text.split()) >= _SEMANTIC_MIN_WORDS:
        return QueryIntent.SEMANTIC
    return QueryIntent.HYBRID


def filename_tokens(name: str) -> list[str]:
    """Lower-case tokens of a filename, split on punctuation and camelCase."""
    spaced = _CAMEL_BOUNDARY_RE.sub(" ", name)
    return [t for t in _TOKEN_SPLIT_RE.split(spaced.lower()) if t]


def query_tokens(query: str) -> list[str]:
    return [t for t in _TOKEN_SPLIT_RE.split(query.lower()) if t]


class HybridRanker:
    """Ranks indexed files against a free-text query.

    Three candidate lists are built and fused with reciprocal rank fusion:

    * **lexical** — every query token is a prefix of some filename token;
    * **fuzzy** — normalised Levenshtein similarity of query and filename;
    * **semantic** — cosine between the query embedding and stored file
      embeddings.  Skipped (the search degrades, it does not fail) when no
      provider is configured, no embeddings exist, or the endpoint fails
      or misses its deadline.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncSession],
        embedding_provider: EmbeddingProvider | None = None,
        config: RankerConfig | None = None,
        *,
        embedding_deadline: float = 30.0,
    ) -> None:
        self._session_factory = session_factory
        self._provider = embedding_provider
        self._config = config or RankerConfig()
        self._deadline = embedding_deadline
        self._cache = QueryEmbeddingCache(self._config.query_cache_size)

    @property
    def cache(self) -> QueryEmbeddingCache:
        return self._cache

    def intent_weights(self, intent: QueryIntent) -> tuple[float, float, float] | None:
        """(lexical, fuzzy, semantic) weights for *intent*, or None for plain RRF."""
        if not self._config.intent_weighting:
            return None
        if intent is QueryIntent.FILENAME:
            return self._config.filename_weights
        if intent is QueryIntent.SEMANTIC:
            return self._config.semantic_weights
        return (1.0, 1.0, 1.0)

    async def search(
        self,
        query: str,
        limit: int = 10,
        *,
        drive_id: str | None = None,
    ) -> SearchResponse:
        """Return up to *limit* files ranked against *query*."""
        intent = classify_intent(query)
        if not query.strip() or limit <= 0:
            return SearchResponse(results=[], intent=intent, semantic_used=False)

        pool = limit * max(1, self._config.candidate_multiplier)

        async with self._session_factory() as session:
            stmt = select(FileRecord.id, FileRecord.path, FileRecord.name)
            if drive_id is not None:
                stmt = stmt.where(FileRecord.drive_id == drive_id)
            rows = (await session.execute(stmt)).all()
            records = {row[0]: (row[1], row[2]) for row in rows}

            lexical = self._lexical(query, records, pool)
            fuzzy = self._fuzzy(query, records, pool)

            semantic_scores: dict[int, float] = {}
            semantic_used = False
            query_vector = await self._query_vector(query)
            if query_vector is not None:
                semantic_scores = await self._semantic(session, query_vector, records, pool)
                semantic_used = bool(semantic_scores)

        lists: list[list[int]] = [lexical, fuzzy]
        weights = self.intent_weights(intent)
        if semantic_used:
            ordered = sorted(semantic_scores.items(), key=lambda p: (-p[1], p[0]))
            lists.append([fid for fid, _ in ordered])
        elif weights is not None:
            weights = weights[:2]

        fused = reciprocal_rank_fusion(lists, k=self._config.rrf_k, weights=weights)

        membership = [set(ranked) for ranked in lists]
        results: list[RankedFile] = []
        for file_id, score in fused[:limit]:
            path, name = records[file_id]
            signals = tuple(
                _SIGNALS[i] for i, members in enumerate(membership) if file_id in members
            )
            results.append(
                RankedFile(
                    file_id=file_id,
                    path=path,
                    name=name,
                    score=score,
                    embedding_score=semantic_scores.get(file_id),
                    signals=signals,
                )
            )
        return SearchResponse(results=results, intent=intent, semantic_used=semantic_used)

    # ------------------------------------------------------------------
    # Candidate lists
    # ------------------------------------------------------------------

    @staticmethod
    def _lexical(query: str, records: dict[int, tuple[str, str]], pool: int) -> list[int]:
        tokens = query_tokens(query)
        if not tokens:
            return []
        matches: list[tuple[int, int, int]] = []
        for file_id, (_path, name) in records.items():
            name_tokens = filename_tokens(name)
            if all(any(nt.startswith(qt) for nt in name_tokens) for qt in tokens):
                # Fewer leftover tokens means a tighter match
                matches.append((len(name_tokens) - len(tokens), len(name), file_id))
        matches.sort()
        return [file_id for _, _, file_id in matches[:pool]]

    def _fuzzy(self, query: str, records: dict[int, tuple[str, str]], pool: int) -> list[int]:
        needle = normalize_query(query)
        scored: list[tuple[float, int]] = []
        for file_id, (_path, name) in records.items():
            lowered = name.casefold()
            similarity = max(
                string_similarity(needle, lowered),
                string_similarity(needle, file_stem(lowered)),
            )
            if similarity >= self._config.min_fuzzy_similarity:
                scored.append((-similarity, file_id))
        scored.sort()
        return [file_id for _, file_id in scored[:pool]]

    async def _query_vector(self, query: str) -> np.ndarray | None:
        if self._provider is None:
            return None
        cached = self._cache.get(query)
        if cached is None:
            try:
                vectors = await asyncio.wait_for(
                    embed_batch(self._provider, [normalize_query(query)]),
                    timeout=self._deadline,
                )
            except (EmbeddingUnavailableError, TimeoutError) as e:
                logger.warning("Semantic signal skipped for query %r: %s", query, e)
                return None
            cached = vectors[0]
            self._cache.put(query, cached)
        return np.asarray(cached, dtype=np.float32)

    async def _semantic(
        self,
        session: AsyncSession,
        query_vector: np.ndarray,
        records: dict[int, tuple[str, str]],
        pool: int,
    ) -> dict[int, float]:
        result = await session.execute(select(FileEmbedding.file_id, FileEmbedding.vector))
        ids: list[int] = []
        vectors: list[np.ndarray] = []
        for file_id, blob in result.all():
            if file_id not in records:
                continue
            vector = decode_vector(blob)
            # Rows from another model have another width; they cannot be compared
            if vector.shape != query_vector.shape:
                continue
            ids.append(file_id)
            vectors.append(vector)
        if not ids:
            logger.debug("No comparable embeddings stored; semantic signal skipped")
            return {}

        scores = cosine_matrix(query_vector, np.vstack(vectors))
        order = sorted(range(len(ids)), key=lambda i: (-scores[i], ids[i]))[:pool]
        return {ids[i]: float(scores[i]) for i in order}
