"""FileGraph — rustworkx-backed in-memory snapshot of the file edge table."""

from __future__ import annotations

import json
from collections import deque
from typing import TYPE_CHECKING, Any

import rustworkx
from sqlmodel import select

from filesense.models.edges import EdgeKind, FileEdge

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession


class FileGraph:
    """Directed multigraph over file ids.

    Wraps a ``rustworkx.PyDiGraph`` with integer-file-id-keyed nodes.  At
    most one edge exists per ``(source, target, kind)``; adding it again
    updates strength and metadata in place.  Traversals treat edges as
    undirected unless stated otherwise.
    """

    def __init__(self) -> None:
        self._graph: rustworkx.PyDiGraph = rustworkx.PyDiGraph(multigraph=True)
        self._id_to_idx: dict[int, int] = {}
        self._idx_to_id: dict[int, int] = {}
        self._edge_keys: dict[tuple[int, int, str], int] = {}

    # ------------------------------------------------------------------
    # Node operations
    # ------------------------------------------------------------------

    def add_node(self, file_id: int, **attrs: Any) -> None:
        """Add or update a node.  Merges *attrs* if the node already exists."""
        if file_id in self._id_to_idx:
            self._graph[self._id_to_idx[file_id]].update(attrs)
            return
        idx = self._graph.add_node({"file_id": file_id, **attrs})
        self._id_to_idx[file_id] = idx
        self._idx_to_id[idx] = file_id

    def has_node(self, file_id: int) -> bool:
        return file_id in self._id_to_idx

    def nodes(self) -> list[int]:
        return sorted(self._id_to_idx)

    # ------------------------------------------------------------------
    # Edge operations
    # ------------------------------------------------------------------

    def add_edge(
        self,
        source: int,
        target: int,
        kind: str,
        *,
        strength: float = 1.0,
        **metadata: Any,
    ) -> None:
        """Add or upsert an edge, auto-creating missing endpoint nodes."""
        if source == target:
            msg = f"Self-loop on file {source} is not allowed"
            raise ValueError(msg)
        self.add_node(source)
        self.add_node(target)

        key = (source, target, str(kind))
        existing = self._edge_keys.get(key)
        if existing is not None:
            data: dict[str, Any] = self._graph.get_edge_data_by_index(existing)
            data["strength"] = strength
            data["metadata"].update(metadata)
            return
        data = {
            "source": source,
            "target": target,
            "kind": str(kind),
            "strength": strength,
            "metadata": dict(metadata),
        }
        self._edge_keys[key] = self._graph.add_edge(
            self._id_to_idx[source], self._id_to_idx[target], data
        )

    def has_edge(self, source: int, target: int, kind: str | None = None) -> bool:
        """Return whether an edge *source* → *target* exists (of *kind*, if given)."""
        if kind is not None:
            return (source, target, str(kind)) in self._edge_keys
        return any(s == source and t == target for s, t, _ in self._edge_keys)

    def get_edge(self, source: int, target: int, kind: str) -> dict[str, Any]:
        """Return edge data.  Raises ``KeyError`` if missing."""
        idx = self._edge_keys.get((source, target, str(kind)))
        if idx is None:
            msg = f"No {kind} edge from {source} to {target}"
            raise KeyError(msg)
        return dict(self._graph.get_edge_data_by_index(idx))

    def edges(self, kind: str | None = None) -> list[dict[str, Any]]:
        """All edge data dicts, optionally only those of *kind*."""
        result = [dict(data) for data in self._graph.edges()]
        if kind is not None:
            result = [d for d in result if d["kind"] == str(kind)]
        return sorted(result, key=lambda d: (d["source"], d["target"], d["kind"]))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def neighbors(self, file_id: int) -> dict[int, float]:
        """Adjacent files in either direction with the strongest connecting edge."""
        idx = self._id_to_idx.get(file_id)
        if idx is None:
            return {}
        best: dict[int, float] = {}
        incident = list(self._graph.out_edges(idx)) + list(self._graph.in_edges(idx))
        for src_idx, tgt_idx, data in incident:
            other = self._idx_to_id[tgt_idx if src_idx == idx else src_idx]
            strength = float(data["strength"])
            if strength > best.get(other, float("-inf")):
                best[other] = strength
        return best

    def related(
        self, file_id: int, depth: int = 1, limit: int = 20
    ) -> list[tuple[int, float, int]]:
        """Breadth-first neighbourhood of *file_id* up to *depth* hops.

        Each reached file scores the best sum of strengths along a path
        ending at the hop where it was first reached.  Returns
        ``(file_id, strength, depth)`` ordered by strength descending,
        then file id.  Unknown files and ``depth < 1`` give ``[]``.
        """
        if file_id not in self._id_to_idx or depth < 1 or limit < 1:
            return []

        scores: dict[int, float] = {file_id: 0.0}
        hops: dict[int, int] = {file_id: 0}
        frontier: deque[int] = deque([file_id])
        for hop in range(1, depth + 1):
            reached: dict[int, float] = {}
            while frontier:
                current = frontier.popleft()
                for neighbor, strength in self.neighbors(current).items():
                    if neighbor in scores:
                        continue
                    candidate = scores[current] + strength
                    if candidate > reached.get(neighbor, float("-inf")):
                        reached[neighbor] = candidate
            if not reached:
                break
            for neighbor in sorted(reached):
                scores[neighbor] = reached[neighbor]
                hops[neighbor] = hop
                frontier.append(neighbor)

        found = [(fid, scores[fid], hops[fid]) for fid in scores if fid != file_id]
        found.sort(key=lambda item: (-item[1], item[0]))
        return found[:limit]

    def degree(self, file_id: int) -> int:
        """Number of incident edges, both directions."""
        idx = self._id_to_idx.get(file_id)
        if idx is None:
            return 0
        return self._graph.in_degree(idx) + self._graph.out_degree(idx)

    def connected_ids(self) -> set[int]:
        """Files with at least one edge."""
        return {fid for fid in self._id_to_idx if self.degree(fid) > 0}

    def duplicate_ids(self) -> set[int]:
        """Files with at least one ``duplicate`` edge."""
        ids: set[int] = set()
        for source, target, kind in self._edge_keys:
            if kind == EdgeKind.DUPLICATE:
                ids.add(source)
                ids.add(target)
        return ids

    def duplicate_groups(self) -> list[list[int]]:
        """Connected components of the ``duplicate`` subgraph (size ≥ 2).

        Each group is sorted; groups are ordered by their smallest id.
        """
        undirected = rustworkx.PyGraph()
        index: dict[int, int] = {}
        for source, target, kind in self._edge_keys:
            if kind != EdgeKind.DUPLICATE:
                continue
            for fid in (source, target):
                if fid not in index:
                    index[fid] = undirected.add_node(fid)
            undirected.add_edge(index[source], index[target], None)
        if undirected.num_nodes() == 0:
            return []
        groups = [
            sorted(undirected[i] for i in component)
            for component in rustworkx.connected_components(undirected)
        ]
        return sorted((g for g in groups if len(g) >= 2), key=lambda g: g[0])

    # ------------------------------------------------------------------
    # Graph-level
    # ------------------------------------------------------------------

    @property
    def node_count(self) -> int:
        return self._graph.num_nodes()

    @property
    def edge_count(self) -> int:
        return self._graph.num_edges()

    def __repr__(self) -> str:
        return f"FileGraph(nodes={self.node_count}, edges={self.edge_count})"

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def from_edges(cls, edges: Iterable[FileEdge]) -> FileGraph:
        """Build a graph from persisted edge rows."""
        graph = cls()
        for edge in edges:
            metadata = json.loads(edge.metadata_json) if edge.metadata_json else {}
            graph.add_edge(
                edge.source_id, edge.target_id, edge.kind, strength=edge.strength, **metadata
            )
        return graph

    @classmethod
    async def from_sql(cls, session: AsyncSession) -> FileGraph:
        """Load every edge row into a new graph."""
        result = await session.execute(select(FileEdge))
        return cls.from_edges(result.scalars().all())
