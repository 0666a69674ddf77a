"""References analyzer — text files that mention other files by name."""

from __future__ import annotations

import logging
from collections import defaultdict
from pathlib import Path
from typing import TYPE_CHECKING

from filesense.graph.analyzers._base import EdgeCandidate
from filesense.models.edges import EdgeKind
from filesense.utils import file_stem, is_text_file

if TYPE_CHECKING:
    from filesense.graph.analyzers._base import AnalysisContext, FileSnapshot

logger = logging.getLogger(__name__)

REFERENCE_STRENGTH = 0.6


def _read_text(snapshot: FileSnapshot, ceiling: int) -> str | None:
    if snapshot.size_bytes > ceiling:
        return None
    try:
        path = Path(snapshot.path)
        if path.stat().st_size > ceiling:
            return None
        return path.read_text(encoding="utf-8", errors="ignore")
    except OSError as e:
        logger.debug("Reference scan skipped %s: %s", snapshot.path, e)
        return None


def analyze_references(context: AnalysisContext) -> list[EdgeCandidate]:
    """Directed ``references`` edges from a text file to each file whose stem it contains.

    Only stems of at least ``min_reference_stem`` characters are matched,
    and only against files on the scanner's own storage root.
    """
    config = context.config
    edges: list[EdgeCandidate] = []
    for drive_files in context.by_drive().values():
        stems: dict[str, list[int]] = defaultdict(list)
        for snapshot in drive_files:
            stem = file_stem(snapshot.name)
            if len(stem) >= config.min_reference_stem:
                stems[stem].append(snapshot.file_id)
        if not stems:
            continue

        for scanner in drive_files:
            if not is_text_file(scanner.name):
                continue
            content = _read_text(scanner, config.reference_ceiling_bytes)
            if not content:
                continue
            for stem, target_ids in stems.items():
                if stem not in content:
                    continue
                for target_id in target_ids:
                    if target_id != scanner.file_id:
                        edges.append(
                            EdgeCandidate(
                                scanner.file_id,
                                target_id,
                                EdgeKind.REFERENCES,
                                REFERENCE_STRENGTH,
                                {"stem": stem},
                            )
                        )
    return edges
