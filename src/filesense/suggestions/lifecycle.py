"""Suggestion state machine."""

from __future__ import annotations

from typing import TYPE_CHECKING

from filesense.exceptions import InvalidTransitionError
from filesense.models.suggestions import SuggestionStatus
from filesense.utils import utcnow

if TYPE_CHECKING:
    from filesense.models.suggestions import Suggestion

S = SuggestionStatus

TRANSITIONS: dict[str, frozenset[str]] = {
    S.PENDING: frozenset({S.DISMISSED, S.DEFERRED, S.ACCEPTED}),
    S.DEFERRED: frozenset({S.PENDING}),
    # accepted stays accepted on a failed attempt and may be retried; it is
    # reverted directly only when removal of originals stopped part-way
    S.ACCEPTED: frozenset({S.ACCEPTED, S.COMPLETED, S.REVERTED}),
    S.COMPLETED: frozenset({S.REVERTED}),
    S.DISMISSED: frozenset(),
    S.REVERTED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def transition(suggestion: Suggestion, target: SuggestionStatus) -> None:
    """Move *suggestion* to *target*, or raise :class:`InvalidTransitionError`."""
    if not can_transition(suggestion.status, target):
        msg = f"Suggestion {suggestion.id} cannot go from {suggestion.status} to {target}"
        raise InvalidTransitionError(msg)
    suggestion.status = target
    suggestion.updated_at = utcnow()
