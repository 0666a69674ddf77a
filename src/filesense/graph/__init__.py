"""File relationship graph — hashing, analyzers, persisted edges."""

from filesense.graph._rustworkx import FileGraph
from filesense.graph.analyzers import (
    AnalysisContext,
    AnalyzerKind,
    EdgeCandidate,
    FileSnapshot,
    run_analyzer,
)
from filesense.graph.builder import GraphBuilder
from filesense.graph.hasher import ContentHasher, content_fingerprint
from filesense.graph.store import GraphStore
from filesense.graph.types import DuplicatePair, GraphStats, RelatedFile

__all__ = [
    "AnalysisContext",
    "AnalyzerKind",
    "ContentHasher",
    "DuplicatePair",
    "EdgeCandidate",
    "FileGraph",
    "FileSnapshot",
    "GraphBuilder",
    "GraphStats",
    "GraphStore",
    "RelatedFile",
    "content_fingerprint",
    "run_analyzer",
]
