"""Similarity analyzer — embedding neighbours within a directory."""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

import numpy as np

from filesense.graph.analyzers._base import EdgeCandidate
from filesense.models.edges import EdgeKind

if TYPE_CHECKING:
    from filesense.graph.analyzers._base import AnalysisContext, FileSnapshot


def _unit_rows(vectors: list[np.ndarray]) -> np.ndarray:
    matrix = np.vstack(vectors).astype(np.float64)
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0.0] = np.inf
    return matrix / norms


def _pairs(
    context: AnalysisContext,
    group: list[FileSnapshot],
    threshold: float,
    *,
    cross_only: bool = False,
) -> list[EdgeCandidate]:
    embedded = [f for f in group if f.file_id in context.embeddings]
    # Vectors of different widths come from different models
    by_width: dict[int, list[FileSnapshot]] = defaultdict(list)
    for snapshot in embedded:
        by_width[context.embeddings[snapshot.file_id].shape[0]].append(snapshot)

    duplicate_level = context.config.duplicate_similarity
    edges: list[EdgeCandidate] = []
    for members in by_width.values():
        if len(members) < 2:
            continue
        unit = _unit_rows([context.embeddings[m.file_id] for m in members])
        scores = unit @ unit.T
        rows, cols = np.triu_indices(len(members), k=1)
        for i, j in zip(rows.tolist(), cols.tolist(), strict=True):
            a, b = members[i], members[j]
            if cross_only and a.parent_path == b.parent_path:
                continue
            score = float(min(1.0, scores[i, j]))
            if score < threshold:
                continue
            kind = EdgeKind.DUPLICATE if score >= duplicate_level else EdgeKind.SIMILAR
            metadata: dict[str, object] = {"cosine": round(score, 6)}
            fingerprint = context.fingerprints.get(a.file_id)
            same_content = fingerprint is not None and fingerprint == context.fingerprints.get(
                b.file_id
            )
            if kind is EdgeKind.DUPLICATE and same_content:
                metadata["fingerprint"] = fingerprint
            edges.append(
                EdgeCandidate(a.file_id, b.file_id, kind, score, metadata).normalized()
            )
    return edges


def analyze_similarity(context: AnalysisContext) -> list[EdgeCandidate]:
    """``similar`` edges between embedded files whose cosine reaches the threshold.

    Same-directory pairs use ``similarity_threshold``; with
    ``cross_directory_similarity`` enabled, pairs across directories of one
    storage root use the stricter ``cross_directory_threshold``.  Pairs at
    or above ``duplicate_similarity`` are promoted to ``duplicate``; a
    promoted pair with equal content fingerprints records the fingerprint.
    """
    if not context.embeddings:
        return []
    config = context.config
    edges: list[EdgeCandidate] = []
    for group in context.by_directory().values():
        edges.extend(_pairs(context, group, config.similarity_threshold))
    if config.cross_directory_similarity:
        for group in context.by_drive().values():
            edges.extend(
                _pairs(context, group, config.cross_directory_threshold, cross_only=True)
            )
    return edges
