"""Suggestion engine — rule table, persistence and lifecycle."""

from filesense.suggestions.engine import SuggestionDraft, SuggestionEngine
from filesense.suggestions.lifecycle import TRANSITIONS, can_transition, transition

__all__ = [
    "TRANSITIONS",
    "SuggestionDraft",
    "SuggestionEngine",
    "can_transition",
    "transition",
]
