"""Search layer data types — ranked results and embedding pass statistics."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class QueryIntent(StrEnum):
    """What a query looks like: a filename, natural language, or neither."""

    FILENAME = "filename"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"


# ------------------------------------------------------------------
# Results
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RankedFile:
    """A single fused search result.

    Attributes:
        file_id: Identity of the matched :class:`~filesense.models.FileRecord`.
        path: Absolute path of the file.
        name: Filename.
        score: Reciprocal-rank-fusion score (higher is better).
        embedding_score: Cosine similarity to the query, when the semantic
            signal contributed this file.
        signals: Names of the candidate lists the file appeared in.
    """

    file_id: int
    path: str
    name: str
    score: float
    embedding_score: float | None = None
    signals: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class SearchResponse:
    """Results plus how the query was handled.

    Attributes:
        results: Fused results, best first.
        intent: Classified intent of the query.
        semantic_used: False when the embedding signal was skipped.
    """

    results: list[RankedFile] = field(default_factory=list)
    intent: QueryIntent = QueryIntent.HYBRID
    semantic_used: bool = False


# ------------------------------------------------------------------
# Embedding pass
# ------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class EmbeddingStats:
    """Outcome of one batch-embedding pass.

    Attributes:
        embedded: Rows written (new or refreshed).
        batches: Requests sent to the endpoint.
        cancelled: True when the pass stopped at a cancellation check.
    """

    embedded: int = 0
    batches: int = 0
    cancelled: bool = False


@dataclass(frozen=True, slots=True)
class EmbeddingCoverage:
    """How many indexed files have an embedding."""

    total_files: int
    embedded_files: int

    @property
    def ratio(self) -> float:
        if self.total_files == 0:
            return 0.0
        return self.embedded_files / self.total_files
