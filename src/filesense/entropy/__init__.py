"""Entropy scoring — how disorganised a directory is, on five dimensions."""

from filesense.entropy.scorers import (
    DEFAULT_WEIGHTS,
    NamingConvention,
    age_spread,
    classify_naming,
    composite_score,
    depth_waste,
    dominant_convention,
    duplicate_ratio,
    naming_entropy,
    orphan_score,
)
from filesense.entropy.service import DirectoryScore, EntropyService

__all__ = [
    "DEFAULT_WEIGHTS",
    "DirectoryScore",
    "EntropyService",
    "NamingConvention",
    "age_spread",
    "classify_naming",
    "composite_score",
    "depth_waste",
    "dominant_convention",
    "duplicate_ratio",
    "naming_entropy",
    "orphan_score",
]
