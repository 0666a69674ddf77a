"""Edge analyzers — pure functions from an analysis context to proposed edges."""

from __future__ import annotations

from enum import StrEnum

from filesense.graph.analyzers._base import (
    AnalysisContext,
    Analyzer,
    EdgeCandidate,
    FileSnapshot,
)
from filesense.graph.analyzers.comodified import analyze_comodified
from filesense.graph.analyzers.duplicates import analyze_duplicates
from filesense.graph.analyzers.references import analyze_references
from filesense.graph.analyzers.sibling import analyze_siblings
from filesense.graph.analyzers.similarity import analyze_similarity
from filesense.models.edges import EdgeKind


class AnalyzerKind(StrEnum):
    """Closed set of analyzers run by an edge computation pass, in run order."""

    SIBLING = "sibling"
    DUPLICATE = "duplicate"
    REFERENCES = "references"
    CO_MODIFIED = "co_modified"
    SIMILAR = "similar"

    @property
    def analyzer(self) -> Analyzer:
        return ANALYZERS[self]

    @property
    def needs_embeddings(self) -> bool:
        return self is AnalyzerKind.SIMILAR

    @property
    def edge_kinds(self) -> frozenset[EdgeKind]:
        """Edge kinds this analyzer may emit."""
        if self is AnalyzerKind.SIMILAR:
            # close enough embeddings are promoted to duplicates
            return frozenset({EdgeKind.SIMILAR, EdgeKind.DUPLICATE})
        return frozenset({EdgeKind(self.value)})


ANALYZERS: dict[AnalyzerKind, Analyzer] = {
    AnalyzerKind.SIBLING: analyze_siblings,
    AnalyzerKind.DUPLICATE: analyze_duplicates,
    AnalyzerKind.REFERENCES: analyze_references,
    AnalyzerKind.CO_MODIFIED: analyze_comodified,
    AnalyzerKind.SIMILAR: analyze_similarity,
}


def run_analyzer(kind: AnalyzerKind, context: AnalysisContext) -> list[EdgeCandidate]:
    """Run one analyzer and drop self-loops and cross-root pairs from its output."""
    edges: list[EdgeCandidate] = []
    for candidate in kind.analyzer(context):
        if candidate.source_id == candidate.target_id:
            continue
        source = context.get(candidate.source_id)
        target = context.get(candidate.target_id)
        if source is None or target is None or source.drive_id != target.drive_id:
            continue
        edges.append(candidate.normalized())
    return edges


__all__ = [
    "ANALYZERS",
    "AnalysisContext",
    "Analyzer",
    "AnalyzerKind",
    "EdgeCandidate",
    "FileSnapshot",
    "analyze_comodified",
    "analyze_duplicates",
    "analyze_references",
    "analyze_siblings",
    "analyze_similarity",
    "run_analyzer",
]
