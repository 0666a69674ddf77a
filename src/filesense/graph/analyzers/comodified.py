"""Co-modified analyzer — files that change together in version-control history."""

from __future__ import annotations

import logging
import re
import subprocess
from collections import Counter
from itertools import combinations
from pathlib import Path
from typing import TYPE_CHECKING

from filesense.graph.analyzers._base import EdgeCandidate
from filesense.models.edges import EdgeKind

if TYPE_CHECKING:
    from filesense.graph.analyzers._base import AnalysisContext

logger = logging.getLogger(__name__)

_COMMIT_RE = re.compile(r"^[0-9a-f]{40}$")


def parse_git_log(text: str) -> list[list[str]]:
    """Split ``git log --name-only --format=%H`` output into per-commit file lists."""
    commits: list[list[str]] = []
    current: list[str] | None = None
    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue
        if _COMMIT_RE.match(line):
            current = []
            commits.append(current)
        elif current is not None:
            current.append(line)
    return [files for files in commits if files]


def commit_file_sets(repository: Path, days: int) -> list[list[str]]:
    """Absolute paths touched by each commit of *repository* in the last *days* days.

    Returns ``[]`` when git is missing or *repository* is not a repository.
    """
    try:
        completed = subprocess.run(
            [
                "git",
                "-C",
                str(repository),
                "log",
                "--name-only",
                "--format=%H",
                f"--since={days} days ago",
            ],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as e:
        logger.debug("git unavailable for %s: %s", repository, e)
        return []
    if completed.returncode != 0:
        logger.debug("git log failed for %s: %s", repository, completed.stderr.strip())
        return []
    root = Path(repository)
    return [[str(root / rel) for rel in files] for files in parse_git_log(completed.stdout)]


def analyze_comodified(context: AnalysisContext) -> list[EdgeCandidate]:
    """Pairs of indexed files committed together, normalised by the busiest pair.

    Pairs weaker than ``min_comod_strength`` are dropped; ``metadata``
    carries the raw commit count.
    """
    config = context.config
    if not config.repositories:
        return []
    by_path = {f.path: f for f in context.files}

    counts: Counter[tuple[int, int]] = Counter()
    for repository in config.repositories:
        for files in commit_file_sets(repository, config.history_days):
            ids = sorted({by_path[p].file_id for p in files if p in by_path})
            for a, b in combinations(ids, 2):
                if _drive_of(context, a) == _drive_of(context, b):
                    counts[(a, b)] += 1

    if not counts:
        return []
    busiest = max(counts.values())
    edges: list[EdgeCandidate] = []
    for (a, b), count in sorted(counts.items()):
        strength = count / busiest
        if strength >= config.min_comod_strength:
            edges.append(EdgeCandidate(a, b, EdgeKind.CO_MODIFIED, strength, {"commits": count}))
    return edges


def _drive_of(context: AnalysisContext, file_id: int) -> str | None:
    snapshot = context.get(file_id)
    return snapshot.drive_id if snapshot is not None else None
