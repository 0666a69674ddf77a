"""filesense: local file intelligence.

Hybrid search, a file relationship graph, entropy scores, and cleanup
suggestions carried out through verified staging with undo.
"""

__version__ = "0.1.0"

from filesense._filesense import FileSense
from filesense.config import (
    EmbeddingConfig,
    EntropyConfig,
    FileSenseConfig,
    GraphConfig,
    RankerConfig,
    SchedulerConfig,
    StagingConfig,
    SuggestionConfig,
)
from filesense.entropy import DirectoryScore
from filesense.exceptions import (
    ChecksumMismatchError,
    EmbeddingUnavailableError,
    FileSenseError,
    InvalidTransitionError,
    ManifestCorruptedError,
    StagingError,
    SuggestionNotFoundError,
)
from filesense.graph import DuplicatePair, GraphStats, RelatedFile
from filesense.models import (
    EdgeKind,
    FileRecord,
    Suggestion,
    SuggestionKind,
    SuggestionStatus,
)
from filesense.scheduler import (
    CancellationToken,
    IdleScheduler,
    PassResult,
    SchedulerState,
    SchedulerStatus,
)
from filesense.search import EmbeddingClient, QueryIntent, RankedFile, SearchResponse
from filesense.search.protocols import EmbeddingProvider

__all__ = [
    "CancellationToken",
    "ChecksumMismatchError",
    "DirectoryScore",
    "DuplicatePair",
    "EdgeKind",
    "EmbeddingClient",
    "EmbeddingConfig",
    "EmbeddingProvider",
    "EmbeddingUnavailableError",
    "EntropyConfig",
    "FileRecord",
    "FileSense",
    "FileSenseConfig",
    "FileSenseError",
    "GraphConfig",
    "GraphStats",
    "IdleScheduler",
    "InvalidTransitionError",
    "ManifestCorruptedError",
    "PassResult",
    "QueryIntent",
    "RankedFile",
    "RankerConfig",
    "RelatedFile",
    "SchedulerConfig",
    "SchedulerState",
    "SchedulerStatus",
    "SearchResponse",
    "StagingConfig",
    "StagingError",
    "Suggestion",
    "SuggestionConfig",
    "SuggestionKind",
    "SuggestionNotFoundError",
    "SuggestionStatus",
    "__version__",
]
