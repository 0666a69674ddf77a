"""Search layer — embedding client, batch embedder, hybrid ranker."""

from filesense.search.embedder import BatchEmbedder, PendingEmbedding
from filesense.search.embedding_client import (
    MAX_BATCH_SIZE,
    EmbeddingClient,
    build_embedding_text,
    size_bucket,
)
from filesense.search.protocols import EmbeddingProvider
from filesense.search.ranker import HybridRanker, classify_intent
from filesense.search.similarity import (
    QueryEmbeddingCache,
    cosine_similarity,
    reciprocal_rank_fusion,
)
from filesense.search.types import (
    EmbeddingCoverage,
    EmbeddingStats,
    QueryIntent,
    RankedFile,
    SearchResponse,
)

__all__ = [
    "MAX_BATCH_SIZE",
    "BatchEmbedder",
    "EmbeddingClient",
    "EmbeddingCoverage",
    "EmbeddingProvider",
    "EmbeddingStats",
    "HybridRanker",
    "PendingEmbedding",
    "QueryEmbeddingCache",
    "QueryIntent",
    "RankedFile",
    "SearchResponse",
    "build_embedding_text",
    "classify_intent",
    "cosine_similarity",
    "reciprocal_rank_fusion",
    "size_bucket",
]
