"""Vector similarity and rank fusion primitives."""

from __future__ import annotations

from collections import OrderedDict
from typing import TYPE_CHECKING, Any

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Hashable, Sequence


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Normalised dot product of *a* and *b*.

    Returns 0.0 when either vector has zero magnitude or the lengths differ.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na == 0.0 or nb == 0.0:
        return 0.0
    value = float(np.dot(va, vb) / (na * nb))
    return max(-1.0, min(1.0, value))


def cosine_matrix(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine of *query* against every row of *matrix*; zero-norm rows score 0."""
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float64)
    q = np.asarray(query, dtype=np.float64)
    m = np.asarray(matrix, dtype=np.float64)
    qn = np.linalg.norm(q)
    if qn == 0.0:
        return np.zeros(m.shape[0], dtype=np.float64)
    norms = np.linalg.norm(m, axis=1)
    safe = np.where(norms == 0.0, 1.0, norms)
    scores = (m @ q) / (safe * qn)
    scores[norms == 0.0] = 0.0
    return np.clip(scores, -1.0, 1.0)


def reciprocal_rank_fusion(
    lists: Sequence[Sequence[Hashable]],
    k: int = 60,
    weights: Sequence[float] | None = None,
) -> list[tuple[Any, float]]:
    """Fuse ranked lists into one.

    Each item scores ``sum(weight / (k + rank))`` over the lists it appears
    in.  Ranks are 1-based positions among a list's distinct items: a
    repeated item is ignored after its first occurrence and takes no rank.
    Ties are broken by the item itself, ascending.
    """
    if weights is not None and len(weights) != len(lists):
        msg = f"Got {len(weights)} weights for {len(lists)} lists"
        raise ValueError(msg)

    scores: dict[Any, float] = {}
    for index, ranked in enumerate(lists):
        weight = 1.0 if weights is None else float(weights[index])
        seen: set[Hashable] = set()
        rank = 0
        for item in ranked:
            if item in seen:
                continue
            seen.add(item)
            rank += 1
            scores[item] = scores.get(item, 0.0) + weight / (k + rank)

    return sorted(scores.items(), key=lambda pair: (-pair[1], pair[0]))


def normalize_query(query: str) -> str:
    """Trim, case-fold and collapse internal whitespace."""
    return " ".join(query.split()).casefold()


class QueryEmbeddingCache:
    """Bounded LRU of query embeddings keyed by the normalised query."""

    def __init__(self, max_size: int = 64) -> None:
        if max_size < 1:
            msg = "max_size must be at least 1"
            raise ValueError(msg)
        self._max_size = max_size
        self._entries: OrderedDict[str, list[float]] = OrderedDict()

    def get(self, query: str) -> list[float] | None:
        key = normalize_query(query)
        vector = self._entries.get(key)
        if vector is not None:
            self._entries.move_to_end(key)
        return vector

    def put(self, query: str, vector: list[float]) -> None:
        key = normalize_query(query)
        self._entries[key] = vector
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_size:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, query: object) -> bool:
        return isinstance(query, str) and normalize_query(query) in self._entries
