"""Duplicate analyzer — files sharing a content fingerprint."""

from __future__ import annotations

from collections import defaultdict
from itertools import combinations
from typing import TYPE_CHECKING

from filesense.graph.analyzers._base import EdgeCandidate
from filesense.models.edges import EdgeKind

if TYPE_CHECKING:
    from filesense.graph.analyzers._base import AnalysisContext


def analyze_duplicates(context: AnalysisContext) -> list[EdgeCandidate]:
    """Every pair in a group of equal fingerprints gets a 1.0 ``duplicate`` edge.

    Groups are formed per storage root; identical content on two drives is
    not linked.
    """
    groups: dict[tuple[str, str], list[int]] = defaultdict(list)
    for file_id, fingerprint in context.fingerprints.items():
        snapshot = context.get(file_id)
        if snapshot is None:
            continue
        groups[(snapshot.drive_id, fingerprint)].append(file_id)

    edges: list[EdgeCandidate] = []
    for (_drive, fingerprint), ids in groups.items():
        for a, b in combinations(sorted(ids), 2):
            edges.append(
                EdgeCandidate(a, b, EdgeKind.DUPLICATE, 1.0, {"fingerprint": fingerprint})
            )
    return edges
