"""Graph result types — immutable data containers."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType


@dataclass(frozen=True, slots=True)
class RelatedFile:
    """A file reached from a starting file by graph traversal.

    ``strength`` is the sum of edge strengths along the best path found;
    at depth 1 it is the direct edge strength.
    """

    file_id: int
    path: str
    name: str
    strength: float
    depth: int


@dataclass(frozen=True, slots=True)
class DuplicatePair:
    """Two files joined by a ``duplicate`` edge (``first_id < second_id``)."""

    first_id: int
    first_path: str
    second_id: int
    second_path: str
    strength: float


@dataclass(frozen=True, slots=True)
class GraphStats:
    """Outcome of one edge computation pass.

    ``edges_by_analyzer`` maps each analyzer that ran to the number of
    edges it upserted; ``failed`` names analyzers that raised;
    ``removed`` counts stored edges that no analyzer re-emitted.
    """

    edges_by_analyzer: MappingProxyType[str, int] = field(
        default_factory=lambda: MappingProxyType({})
    )
    failed: tuple[str, ...] = ()
    pruned: int = 0
    removed: int = 0

    @property
    def total_edges(self) -> int:
        return sum(self.edges_by_analyzer.values())


def graph_stats(
    edges_by_analyzer: dict[str, int],
    failed: list[str] | None = None,
    pruned: int = 0,
    removed: int = 0,
) -> GraphStats:
    """Convenience factory — converts mutable inputs to an immutable result."""
    return GraphStats(
        edges_by_analyzer=MappingProxyType(dict(edges_by_analyzer)),
        failed=tuple(failed or ()),
        pruned=pruned,
        removed=removed,
    )
