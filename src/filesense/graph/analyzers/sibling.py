"""Sibling analyzer — naming relationships between files of one directory."""

from __future__ import annotations

import logging
from itertools import combinations
from typing import TYPE_CHECKING

from filesense.graph.analyzers._base import EdgeCandidate
from filesense.models.edges import EdgeKind
from filesense.utils import file_stem

if TYPE_CHECKING:
    from filesense.graph.analyzers._base import AnalysisContext

logger = logging.getLogger(__name__)

SAME_STEM = 0.9
TEST_PAIR = 0.85
EXAMPLE_VARIANT = 0.5
README_LINK = 0.3

_TEST_MARKERS = ("_test", "-test", ".test")
_VARIANT_WORDS = ("example", "sample")
_SEPARATORS = "._-"


def _is_test_pair(a: str, b: str) -> bool:
    for base, other in ((a, b), (b, a)):
        if any(other == base + marker for marker in _TEST_MARKERS):
            return True
        if other in (f"test_{base}", f"test-{base}"):
            return True
    return False


def _is_example_variant(a: str, b: str) -> bool:
    for base, other in ((a, b), (b, a)):
        for word in _VARIANT_WORDS:
            for sep in _SEPARATORS:
                if other in (f"{base}{sep}{word}", f"{word}{sep}{base}"):
                    return True
    return False


def sibling_strength(name_a: str, name_b: str) -> float | None:
    """Strength of the naming relationship between two filenames, if any."""
    stem_a = file_stem(name_a).lower()
    stem_b = file_stem(name_b).lower()
    if not stem_a or not stem_b:
        return None
    if stem_a == stem_b:
        return SAME_STEM
    if _is_test_pair(stem_a, stem_b):
        return TEST_PAIR
    if _is_example_variant(stem_a, stem_b):
        return EXAMPLE_VARIANT
    if name_a.lower().startswith("readme") or name_b.lower().startswith("readme"):
        return README_LINK
    return None


def analyze_siblings(context: AnalysisContext) -> list[EdgeCandidate]:
    """Pairwise naming relationships within each directory.

    Directories holding more than ``max_directory_size`` files are skipped.
    """
    limit = context.config.max_directory_size
    edges: list[EdgeCandidate] = []
    for (_drive, directory), group in context.by_directory().items():
        if len(group) < 2:
            continue
        if len(group) > limit:
            logger.debug("Sibling analysis skipped %s (%d files)", directory, len(group))
            continue
        for a, b in combinations(group, 2):
            strength = sibling_strength(a.name, b.name)
            if strength is not None:
                edges.append(
                    EdgeCandidate(a.file_id, b.file_id, EdgeKind.SIBLING, strength).normalized()
                )
    return edges
