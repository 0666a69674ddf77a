"""Entropy scorers — each maps a directory signal to a float in [0, 1]."""

from __future__ import annotations

import math
from collections import Counter
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from filesense.utils import ensure_utc, file_stem

if TYPE_CHECKING:
    from collections.abc import Collection, Iterable, Sequence
    from datetime import datetime

DEFAULT_WEIGHTS: tuple[float, float, float, float, float] = (0.25, 0.20, 0.15, 0.25, 0.15)
"""Composite weights for (naming, age, depth, duplicate, orphan)."""


class NamingConvention(StrEnum):
    KEBAB = "kebab-case"
    SNAKE = "snake_case"
    SCREAMING_SNAKE = "SCREAMING_SNAKE"
    PASCAL = "PascalCase"
    CAMEL = "camelCase"
    SPACES = "spaces"
    LOWER = "lower"
    OTHER = "other"


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def classify_naming(name: str) -> NamingConvention:
    """Naming convention of a filename's stem."""
    stem = file_stem(name)
    if not stem:
        return NamingConvention.OTHER
    no_separators = "_" not in stem and "-" not in stem
    if "-" in stem and all(c.islower() or c.isdigit() or c == "-" for c in stem):
        return NamingConvention.KEBAB
    if "_" in stem and all(c.islower() or c.isdigit() or c == "_" for c in stem):
        return NamingConvention.SNAKE
    if "_" in stem and all(c.isupper() or c.isdigit() or c == "_" for c in stem):
        return NamingConvention.SCREAMING_SNAKE
    if stem[0].isupper() and any(c.islower() for c in stem) and no_separators and " " not in stem:
        return NamingConvention.PASCAL
    if stem[0].islower() and any(c.isupper() for c in stem) and no_separators and " " not in stem:
        return NamingConvention.CAMEL
    if " " in stem:
        return NamingConvention.SPACES
    if all(c.islower() or c.isdigit() for c in stem):
        return NamingConvention.LOWER
    return NamingConvention.OTHER


def naming_entropy(names: Sequence[str]) -> float:
    """Shannon entropy of naming conventions, normalised by log2 of the classes present.

    Fewer than two names, or a single convention, scores 0.0.
    """
    if len(names) < 2:
        return 0.0
    counts = Counter(classify_naming(n) for n in names)
    if len(counts) <= 1:
        return 0.0
    total = len(names)
    entropy = -sum((c / total) * math.log2(c / total) for c in counts.values())
    return _clamp(entropy / math.log2(len(counts)))


def dominant_convention(names: Sequence[str]) -> NamingConvention | None:
    """Most common convention; ties go to the convention seen first."""
    if not names:
        return None
    counts = Counter(classify_naming(n) for n in names)
    return counts.most_common(1)[0][0]


def age_spread(mtimes: Sequence[datetime], ceiling_seconds: float) -> float:
    """(newest - oldest) / ceiling, clamped.  Fewer than two files score 0.0."""
    if len(mtimes) < 2 or ceiling_seconds <= 0:
        return 0.0
    stamps = [ensure_utc(m).timestamp() for m in mtimes]
    return _clamp((max(stamps) - min(stamps)) / ceiling_seconds)


def depth_waste(directory: str | Path, max_depth: int = 20) -> float:
    """Share of walked levels that are single-child directory links.

    Walks down from *directory* while the current level contains exactly
    one entry and it is a directory.  A missing directory scores 0.0.
    """
    current = Path(directory)
    chain = 0
    walked = 0
    while walked < max_depth:
        walked += 1
        try:
            entries = list(current.iterdir())
        except OSError:
            break
        if len(entries) == 1 and entries[0].is_dir():
            chain += 1
            current = entries[0]
        else:
            break
    if walked == 0:
        return 0.0
    return _clamp(chain / walked)


def duplicate_ratio(file_ids: Collection[int], duplicate_ids: Collection[int]) -> float:
    """Fraction of *file_ids* with at least one duplicate edge."""
    if not file_ids:
        return 0.0
    return _clamp(sum(1 for fid in file_ids if fid in duplicate_ids) / len(file_ids))


def orphan_score(file_ids: Collection[int], connected_ids: Collection[int]) -> float:
    """Fraction of *file_ids* with no edges at all."""
    if not file_ids:
        return 0.0
    return _clamp(sum(1 for fid in file_ids if fid not in connected_ids) / len(file_ids))


def composite_score(
    scores: Iterable[float],
    weights: Iterable[float] = DEFAULT_WEIGHTS,
) -> float:
    """Weighted average of the dimensions, normalised by the weight sum."""
    pairs = list(zip(scores, weights, strict=True))
    total_weight = sum(w for _, w in pairs)
    if total_weight <= 0:
        return 0.0
    return _clamp(sum(_clamp(s) * w for s, w in pairs) / total_weight)
