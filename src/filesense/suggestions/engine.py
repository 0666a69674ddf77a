"""SuggestionEngine — rule table from entropy scores to cleanup proposals."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from sqlmodel import select

from filesense.config import SuggestionConfig
from filesense.entropy.scorers import classify_naming, dominant_convention
from filesense.exceptions import SuggestionNotFoundError
from filesense.models.suggestions import (
    OPEN_STATUSES,
    Suggestion,
    SuggestionKind,
    SuggestionStatus,
    suggestion_fingerprint,
)
from filesense.suggestions.lifecycle import transition
from filesense.utils import ensure_utc, utcnow

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from filesense.entropy.service import DirectoryScore
    from filesense.models.files import FileRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SuggestionDraft:
    """A rule firing, before it is checked against persisted suggestions."""

    kind: SuggestionKind
    subject: str
    affected_paths: tuple[str, ...]
    reason: str
    confidence: float
    space_savings_bytes: int = 0
    kept_paths: tuple[tuple[str, str], ...] = ()
    """``(redundant, kept)`` path pairs; set only for ``deduplicate``."""

    @property
    def fingerprint(self) -> str:
        return suggestion_fingerprint(self.kind, list(self.affected_paths))


class SuggestionEngine:
    """Turns directory scores into suggestions and manages their lifecycle.

    Rules (thresholds from :class:`SuggestionConfig`):

    ==================================  ===============
    newest file older than inactivity   ``archive``
    duplicate ratio above threshold     ``deduplicate``
    depth waste above threshold         ``flatten``
    naming entropy above threshold      ``rename``
    composite above threshold, alone    ``organize``
    ==================================  ===============
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncSession],
        config: SuggestionConfig | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config or SuggestionConfig()

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def confidence(self, signals: int) -> float:
        """``min(1, base + step * (signals - 1))`` for at least one signal."""
        signals = max(1, signals)
        return min(1.0, self._config.base_confidence + self._config.confidence_step * (signals - 1))

    def evaluate(
        self,
        score: DirectoryScore,
        records: list[FileRecord],
        duplicate_groups: list[list[int]] | None = None,
        group_records: Mapping[int, FileRecord] | None = None,
        *,
        now: datetime | None = None,
    ) -> list[SuggestionDraft]:
        """Apply the rule table to one directory.

        *duplicate_groups* are transitive duplicate groups; *group_records*
        resolves their members (which may live in other directories) so
        the oldest copy of each group is the one kept.  A directory with no
        files of its own can only be flattened.
        """
        config = self._config
        now = now or utcnow()
        directory = score.subject_id

        newest = max((ensure_utc(r.modified_at) for r in records), default=now)
        inactive = bool(records) and now - newest > timedelta(seconds=config.inactivity_seconds)
        fired = {
            SuggestionKind.ARCHIVE: inactive,
            SuggestionKind.DEDUPLICATE: score.duplicate_ratio > config.duplicate_threshold,
            SuggestionKind.FLATTEN: score.depth_waste > config.depth_threshold,
            SuggestionKind.RENAME: score.naming_entropy > config.naming_threshold,
        }
        signals = sum(fired.values())
        confidence = self.confidence(signals)

        drafts: list[SuggestionDraft] = []
        if fired[SuggestionKind.ARCHIVE]:
            idle_days = (now - newest).days
            drafts.append(
                SuggestionDraft(
                    kind=SuggestionKind.ARCHIVE,
                    subject=directory,
                    affected_paths=tuple(sorted(r.path for r in records)),
                    reason=f"No file in {directory} has changed for {idle_days} days",
                    confidence=confidence,
                    space_savings_bytes=sum(r.size_bytes for r in records),
                )
            )
        if fired[SuggestionKind.DEDUPLICATE]:
            pairs = self._redundant_copies(records, duplicate_groups or [], group_records or {})
            redundant = [r for r, _ in pairs]
            if redundant:
                drafts.append(
                    SuggestionDraft(
                        kind=SuggestionKind.DEDUPLICATE,
                        subject=directory,
                        affected_paths=tuple(sorted(r.path for r in redundant)),
                        reason=(
                            f"{len(redundant)} file(s) in {directory} duplicate an older copy "
                            f"({score.duplicate_ratio:.0%} of the directory)"
                        ),
                        confidence=confidence,
                        space_savings_bytes=sum(r.size_bytes for r in redundant),
                        kept_paths=tuple(sorted((r.path, kept.path) for r, kept in pairs)),
                    )
                )
        if fired[SuggestionKind.FLATTEN]:
            drafts.append(
                SuggestionDraft(
                    kind=SuggestionKind.FLATTEN,
                    subject=directory,
                    affected_paths=(directory,),
                    reason=f"{directory} sits on a chain of single-child directories",
                    confidence=confidence,
                )
            )
        if fired[SuggestionKind.RENAME]:
            dominant = dominant_convention([r.name for r in records])
            off = [r for r in records if classify_naming(r.name) != dominant]
            if off:
                drafts.append(
                    SuggestionDraft(
                        kind=SuggestionKind.RENAME,
                        subject=directory,
                        affected_paths=tuple(sorted(r.path for r in off)),
                        reason=f"{len(off)} file(s) in {directory} do not follow {dominant}",
                        confidence=confidence,
                    )
                )
        if records and not signals and score.composite > config.composite_threshold:
            drafts.append(
                SuggestionDraft(
                    kind=SuggestionKind.ORGANIZE,
                    subject=directory,
                    affected_paths=tuple(sorted(r.path for r in records)),
                    reason=f"{directory} scores {score.composite:.2f} on overall disorder",
                    confidence=self.confidence(1),
                )
            )
        return drafts

    @staticmethod
    def _redundant_copies(
        records: list[FileRecord],
        duplicate_groups: list[list[int]],
        group_records: Mapping[int, FileRecord],
    ) -> list[tuple[FileRecord, FileRecord]]:
        """``(redundant, kept)`` pairs for the local members of each group."""
        local = {r.id: r for r in records}
        redundant: list[tuple[FileRecord, FileRecord]] = []
        for group in duplicate_groups:
            members = [group_records.get(fid) or local.get(fid) for fid in group]
            known = [m for m in members if m is not None]
            if len(known) < 2 or not any(m.id in local for m in known):
                continue
            keep = min(known, key=lambda m: (ensure_utc(m.modified_at), m.id))
            redundant.extend(
                (local[m.id], keep) for m in known if m.id in local and m.id != keep.id
            )
        return sorted(redundant, key=lambda pair: pair[0].id)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def persist(
        self, session: AsyncSession, drafts: list[SuggestionDraft]
    ) -> list[Suggestion]:
        """Stage new rows for *drafts* on *session*; the caller commits.

        A draft whose fingerprint matches an open suggestion is skipped.
        """
        if not drafts:
            return []
        fingerprints = [d.fingerprint for d in drafts]
        result = await session.execute(
            select(Suggestion.fingerprint).where(
                Suggestion.fingerprint.in_(fingerprints),
                Suggestion.status.in_(sorted(OPEN_STATUSES)),
            )
        )
        existing = {row[0] for row in result.all()}

        created: list[Suggestion] = []
        for draft, fingerprint in zip(drafts, fingerprints, strict=True):
            if fingerprint in existing:
                continue
            existing.add(fingerprint)
            now = utcnow()
            row = Suggestion(
                kind=draft.kind,
                subject=draft.subject,
                affected_paths_json=json.dumps(list(draft.affected_paths)),
                kept_paths_json=json.dumps(dict(draft.kept_paths), sort_keys=True),
                reason=draft.reason,
                confidence=draft.confidence,
                space_savings_bytes=draft.space_savings_bytes,
                status=SuggestionStatus.PENDING,
                fingerprint=fingerprint,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            created.append(row)
        if created:
            await session.flush()
            logger.info("Created %d suggestion(s)", len(created))
        return created

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def list_suggestions(
        self,
        status: SuggestionStatus | None = None,
        kind: SuggestionKind | None = None,
        limit: int = 100,
    ) -> list[Suggestion]:
        """Suggestions newest first, optionally filtered by status and kind."""
        async with self._session_factory() as session:
            stmt = select(Suggestion)
            if status is not None:
                stmt = stmt.where(Suggestion.status == status)
            if kind is not None:
                stmt = stmt.where(Suggestion.kind == kind)
            stmt = stmt.order_by(Suggestion.created_at.desc(), Suggestion.id.desc()).limit(limit)
            return list((await session.execute(stmt)).scalars().all())

    async def get(self, suggestion_id: int) -> Suggestion:
        async with self._session_factory() as session:
            suggestion = await session.get(Suggestion, suggestion_id)
        if suggestion is None:
            msg = f"Suggestion {suggestion_id} not found"
            raise SuggestionNotFoundError(msg)
        return suggestion

    async def dismiss(self, suggestion_id: int) -> Suggestion:
        async with self._session_factory() as session:
            suggestion = await self._load(session, suggestion_id)
            transition(suggestion, SuggestionStatus.DISMISSED)
            await session.commit()
        return suggestion

    async def defer(self, suggestion_id: int, until: datetime | None = None) -> Suggestion:
        """Hide a pending suggestion until *until* (default: the configured deferral)."""
        async with self._session_factory() as session:
            suggestion = await self._load(session, suggestion_id)
            transition(suggestion, SuggestionStatus.DEFERRED)
            suggestion.deferred_until = until or utcnow() + timedelta(
                seconds=self._config.default_defer_seconds
            )
            await session.commit()
        return suggestion

    async def reactivate_expired_deferrals(self, now: datetime | None = None) -> int:
        """Return deferred suggestions whose deadline has passed to pending."""
        now = now or utcnow()
        async with self._session_factory() as session:
            result = await session.execute(
                select(Suggestion).where(Suggestion.status == SuggestionStatus.DEFERRED)
            )
            reactivated = 0
            for suggestion in result.scalars().all():
                deadline = suggestion.deferred_until
                if deadline is None or ensure_utc(deadline) <= now:
                    transition(suggestion, SuggestionStatus.PENDING)
                    suggestion.deferred_until = None
                    reactivated += 1
            await session.commit()
        if reactivated:
            logger.info("Reactivated %d deferred suggestion(s)", reactivated)
        return reactivated

    @staticmethod
    async def _load(session: AsyncSession, suggestion_id: int) -> Suggestion:
        suggestion = await session.get(Suggestion, suggestion_id)
        if suggestion is None:
            msg = f"Suggestion {suggestion_id} not found"
            raise SuggestionNotFoundError(msg)
        return suggestion
