"""Configuration dataclasses — every threshold and interval lives here."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

_DEFAULT_EMBEDDING_URL = "http://localhost:11434"
_DEFAULT_EMBEDDING_MODEL = "nomic-embed-text"

DAY_SECONDS = 24 * 3600.0


@dataclass
class EmbeddingConfig:
    """Embedding endpoint and batch-embedding settings."""

    base_url: str = ""
    """Endpoint root.  Falls back to ``FILESENSE_EMBEDDING_URL`` then Ollama's default."""

    model: str = ""
    """Model name.  Falls back to ``FILESENSE_EMBEDDING_MODEL`` then ``nomic-embed-text``."""

    batch_size: int = 32
    """Texts per request.  Capped at the client's hard batch limit."""

    request_deadline: float = 30.0
    """Overall deadline (seconds) callers apply around one batch call."""

    content_ceiling_bytes: int = 64 * 1024
    """Text files larger than this are embedded from metadata only."""

    content_tokens: int = 256
    """Leading whitespace tokens of content appended to the composite text."""

    max_files_per_pass: int = 2048
    """Upper bound on files embedded by one background pass."""

    def __post_init__(self) -> None:
        if not self.base_url:
            self.base_url = os.environ.get("FILESENSE_EMBEDDING_URL", _DEFAULT_EMBEDDING_URL)
        if not self.model:
            self.model = os.environ.get("FILESENSE_EMBEDDING_MODEL", _DEFAULT_EMBEDDING_MODEL)
        self.base_url = self.base_url.rstrip("/")


@dataclass
class RankerConfig:
    """Hybrid ranker settings."""

    rrf_k: int = 60
    """Reciprocal-rank-fusion smoothing constant."""

    candidate_multiplier: int = 3
    """Each signal contributes ``limit * candidate_multiplier`` candidates."""

    query_cache_size: int = 64
    """Entries kept in the query-embedding LRU cache."""

    min_fuzzy_similarity: float = 0.3
    """Fuzzy candidates below this normalised similarity are dropped."""

    intent_weighting: bool = True
    """Weight signals by query intent (filename-like vs natural language)."""

    filename_weights: tuple[float, float, float] = (2.0, 2.0, 0.5)
    """(lexical, fuzzy, semantic) weights for filename-like queries."""

    semantic_weights: tuple[float, float, float] = (0.5, 0.5, 2.0)
    """(lexical, fuzzy, semantic) weights for natural-language queries."""


@dataclass
class GraphConfig:
    """Edge analyzer and graph maintenance settings."""

    max_directory_size: int = 200
    """Directories with more files than this are skipped by the sibling analyzer."""

    reference_ceiling_bytes: int = 100 * 1024
    """Text files larger than this are not scanned for references."""

    min_reference_stem: int = 3
    """Filename stems shorter than this are never matched as references."""

    hash_ceiling_bytes: int = 10 * 1024 * 1024
    """Files larger than this get no content fingerprint."""

    history_days: int = 180
    """Version-control history window for co-modification counts."""

    min_comod_strength: float = 0.3
    """Co-modified pairs weaker than this (after normalisation) are dropped."""

    repositories: list[Path] = field(default_factory=list)
    """Repository roots whose history feeds the co-modified analyzer."""

    similarity_threshold: float = 0.85
    """Cosine similarity needed for a same-directory ``similar`` edge."""

    cross_directory_similarity: bool = False
    """Also compare embeddings across directories (same storage root)."""

    cross_directory_threshold: float = 0.95
    """Cosine similarity needed for a cross-directory ``similar`` edge."""

    duplicate_similarity: float = 0.99
    """Cosine similarity promoted to a ``duplicate`` edge."""

    prune_below: float = 0.1
    """Edges weaker than this are removed by the maintenance pass."""


@dataclass
class EntropyConfig:
    """Entropy scorer settings."""

    age_ceiling_seconds: float = 180 * DAY_SECONDS
    """Modification-time spread that maps to an age score of 1.0."""

    max_depth_probe: int = 20
    """Maximum levels walked when measuring single-child chains."""

    weights: tuple[float, float, float, float, float] = (0.25, 0.20, 0.15, 0.25, 0.15)
    """Composite weights for (naming, age, depth, duplicate, orphan)."""

    storage_roots: dict[str, Path] = field(default_factory=dict)
    """Root directory per drive id.  Ancestors of indexed files are scored up
    to it; a drive without an entry uses the deepest directory its files share."""


@dataclass
class SuggestionConfig:
    """Rule thresholds for the suggestion engine."""

    inactivity_seconds: float = 180 * DAY_SECONDS
    """Directories untouched for longer than this are archive candidates."""

    duplicate_threshold: float = 0.3
    naming_threshold: float = 0.6
    depth_threshold: float = 0.5
    composite_threshold: float = 0.5

    base_confidence: float = 0.5
    """Confidence of a suggestion backed by a single signal."""

    confidence_step: float = 0.15
    """Added confidence per additional corroborating signal."""

    default_defer_seconds: float = 7 * DAY_SECONDS
    """Deferral used when the caller does not give a deadline."""


@dataclass
class StagingConfig:
    """Safe-operations staging settings."""

    data_dir: Path = field(default_factory=lambda: Path.home() / ".filesense")
    """Root for ``staging/``, ``archives/`` and ``operations.jsonl``."""

    retention_seconds: float = 7 * DAY_SECONDS
    """Undo window; staging directories older than this are purged."""

    max_log_bytes: int = 10 * 1024 * 1024
    """Operation log size that triggers rotation."""

    max_rotated_logs: int = 5
    """Rotated operation logs kept on disk."""

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir)

    @property
    def staging_dir(self) -> Path:
        return self.data_dir / "staging"

    @property
    def archive_dir(self) -> Path:
        return self.data_dir / "archives"

    @property
    def log_path(self) -> Path:
        return self.data_dir / "operations.jsonl"


@dataclass
class SchedulerConfig:
    """Idle scheduler settings."""

    enabled: bool = False
    """Background passes are off unless explicitly enabled."""

    idle_threshold_seconds: float = 300.0
    """Inactivity needed before a pass may start."""

    min_interval_seconds: float = 3600.0
    """Minimum time between the end of one pass and the start of the next."""

    poll_interval_seconds: float = 30.0
    """How often the background loop samples the idle probe."""

    throttle_seconds: float = 0.0
    """Pause after each directory to keep the pass in the background."""

    complete_enough_ratio: float = 0.9
    """A cancelled pass that finished this fraction of directories counts as complete."""


@dataclass
class FileSenseConfig:
    """Top-level configuration aggregating every component."""

    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    ranker: RankerConfig = field(default_factory=RankerConfig)
    graph: GraphConfig = field(default_factory=GraphConfig)
    entropy: EntropyConfig = field(default_factory=EntropyConfig)
    suggestions: SuggestionConfig = field(default_factory=SuggestionConfig)
    staging: StagingConfig = field(default_factory=StagingConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
