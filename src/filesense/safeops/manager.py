"""SafeOpsManager — the only component allowed to change the user's files."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from filesense.config import StagingConfig
from filesense.exceptions import (
    ChecksumMismatchError,
    InvalidTransitionError,
    ManifestCorruptedError,
    StagingError,
    SuggestionNotFoundError,
)
from filesense.models.suggestions import Suggestion, SuggestionKind, SuggestionStatus
from filesense.safeops.archive import create_archive, verify_archive
from filesense.safeops.manifest import (
    FILES_DIR,
    ManifestEntry,
    ManifestState,
    StagingManifest,
)
from filesense.safeops.oplog import OperationLog
from filesense.suggestions.lifecycle import transition
from filesense.utils import ensure_utc, sha256_file, utcnow

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

_REMOVES_ORIGINALS = frozenset({SuggestionKind.ARCHIVE, SuggestionKind.DEDUPLICATE})


def _expand(paths: list[str]) -> list[Path]:
    """Affected paths as files; directories contribute every file beneath them."""
    files: list[Path] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            files.extend(sorted(p for p in path.rglob("*") if p.is_file()))
        elif path.is_file():
            files.append(path)
        else:
            msg = f"Affected path no longer exists: {path}"
            raise StagingError(msg)
    return files


def _remove_original(path: Path) -> None:
    path.unlink()


class SafeOpsManager:
    """Stages, verifies, completes and undoes accepted suggestions.

    Nothing is removed until every staged copy (and, for archives, every
    archive member) matches its recorded sha256, and, for deduplication,
    every removed file still matches the copy that is kept.  Each staging
    directory carries a manifest that :meth:`undo` replays; staging
    directories outlive the operation for the retention window and are
    then purged.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncSession],
        config: StagingConfig | None = None,
        *,
        oplog: OperationLog | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config or StagingConfig()
        self._oplog = oplog or OperationLog(
            self._config.log_path,
            max_bytes=self._config.max_log_bytes,
            backups=self._config.max_rotated_logs,
        )

    @property
    def oplog(self) -> OperationLog:
        return self._oplog

    # ------------------------------------------------------------------
    # Accept
    # ------------------------------------------------------------------

    async def accept(self, suggestion_id: int) -> Suggestion:
        """Stage, verify and carry out a pending (or previously failed) suggestion.

        If staging or verification fails the suggestion stays ``accepted``
        with ``last_error`` set, originals are untouched, and the error is
        re-raised.  If removing originals stops part-way, the staging
        directory is already recorded on the suggestion and its manifest
        is left ``removing``; :meth:`undo` restores from it.
        """
        async with self._session_factory() as session:
            suggestion = await self._load(session, suggestion_id)
            if suggestion.status == SuggestionStatus.ACCEPTED and suggestion.staging_dir:
                msg = (
                    f"Suggestion {suggestion_id} stopped part-way through removing originals; "
                    f"undo it to restore them from {suggestion.staging_dir}"
                )
                raise StagingError(msg)
            transition(suggestion, SuggestionStatus.ACCEPTED)
            suggestion.last_error = None
            await session.commit()
            kind = SuggestionKind(suggestion.kind)
            affected = suggestion.affected_paths
            kept = suggestion.kept_paths

        staging_dir = self._new_staging_dir(suggestion_id)
        try:
            manifest = await asyncio.to_thread(
                self._stage, suggestion_id, kind, affected, kept, staging_dir
            )
        except (StagingError, OSError) as e:
            await self._record_failure(suggestion_id, e)
            if isinstance(e, StagingError):
                raise
            msg = f"Staging suggestion {suggestion_id} failed: {e}"
            raise StagingError(msg) from e

        if kind in _REMOVES_ORIGINALS:
            async with self._session_factory() as session:
                suggestion = await self._load(session, suggestion_id)
                suggestion.staging_dir = str(staging_dir)
                await session.commit()
            try:
                await asyncio.to_thread(self._remove_originals, manifest, staging_dir)
            except OSError as e:
                logger.warning("Removal for suggestion %d stopped part-way", suggestion_id)
                await self._record_failure(suggestion_id, e)
                msg = (
                    f"Removing originals for suggestion {suggestion_id} stopped part-way: {e}; "
                    f"undo restores them from {staging_dir}"
                )
                raise StagingError(msg) from e

        manifest.state = ManifestState.COMPLETED
        await asyncio.to_thread(manifest.write, staging_dir)

        async with self._session_factory() as session:
            suggestion = await self._load(session, suggestion_id)
            transition(suggestion, SuggestionStatus.COMPLETED)
            suggestion.staging_dir = str(staging_dir)
            suggestion.last_error = None
            await session.commit()
        self._oplog.record(
            "completed",
            suggestion_id=suggestion_id,
            kind=str(kind),
            staging_dir=str(staging_dir),
            entries=len(manifest.entries),
        )
        logger.info("Suggestion %d (%s) completed via %s", suggestion_id, kind, staging_dir)
        return suggestion

    def _new_staging_dir(self, suggestion_id: int) -> Path:
        stamp = utcnow().strftime("%Y%m%dT%H%M%S%fZ")
        return self._config.staging_dir / f"{stamp}-s{suggestion_id}"

    def _stage(
        self,
        suggestion_id: int,
        kind: SuggestionKind,
        affected: list[str],
        kept: dict[str, str],
        staging_dir: Path,
    ) -> StagingManifest:
        """Copy, verify and (for archives) pack every affected file.

        On failure the staging directory and any archive are discarded.
        """
        files_dir = staging_dir / FILES_DIR
        files_dir.mkdir(parents=True, exist_ok=False)
        manifest = StagingManifest(
            suggestion_id=suggestion_id,
            kind=str(kind),
            created_at=utcnow().isoformat(),
        )
        archive_path: Path | None = None
        try:
            for n, original in enumerate(_expand(affected)):
                manifest.entries.append(self._stage_file(original, staging_dir, n))
            manifest.write(staging_dir)

            if kind is SuggestionKind.DEDUPLICATE:
                self._verify_kept(manifest, kept)

            if kind is SuggestionKind.ARCHIVE:
                archive_path = self._config.archive_dir / f"{staging_dir.name}.tar.gz"
                create_archive(staging_dir, manifest, archive_path)
                problems = verify_archive(archive_path, manifest)
                if problems:
                    msg = f"Archive {archive_path} failed verification: {'; '.join(problems)}"
                    raise ChecksumMismatchError(msg)
                manifest.archive_path = str(archive_path)
                manifest.archive_sha256 = sha256_file(archive_path)
                self._oplog.record(
                    "archived",
                    suggestion_id=suggestion_id,
                    archive=str(archive_path),
                    sha256=manifest.archive_sha256,
                )
                manifest.write(staging_dir)
        except (StagingError, OSError):
            self._discard(staging_dir, archive_path)
            raise
        return manifest

    def _stage_file(self, original: Path, staging_dir: Path, n: int) -> ManifestEntry:
        expected = sha256_file(original)
        relative = f"{FILES_DIR}/{n}-{original.name}"
        staged = staging_dir / relative
        shutil.copy2(original, staged)
        actual = sha256_file(staged)
        if actual != expected:
            msg = f"Staged copy of {original} does not match the original checksum"
            raise ChecksumMismatchError(msg)
        self._oplog.record("staged", path=str(original), staged=str(staged), sha256=expected)
        return ManifestEntry(
            original=str(original),
            staged=relative,
            sha256=expected,
            size_bytes=staged.stat().st_size,
        )

    @staticmethod
    def _verify_kept(manifest: StagingManifest, kept: dict[str, str]) -> None:
        """Each file about to be removed must still equal the copy that stays."""
        digests: dict[str, str] = {}
        for entry in manifest.entries:
            keep = kept.get(entry.original)
            if keep is None:
                msg = f"No kept copy is recorded for {entry.original}"
                raise ChecksumMismatchError(msg)
            if keep not in digests:
                try:
                    digests[keep] = sha256_file(keep)
                except OSError as e:
                    msg = f"Kept copy {keep} cannot be read: {e}"
                    raise ChecksumMismatchError(msg) from e
            if digests[keep] != entry.sha256:
                msg = f"{entry.original} no longer matches the kept copy {keep}"
                raise ChecksumMismatchError(msg)

    def _remove_originals(self, manifest: StagingManifest, staging_dir: Path) -> None:
        manifest.state = ManifestState.REMOVING
        manifest.write(staging_dir)
        for entry in manifest.entries:
            _remove_original(Path(entry.original))
            self._oplog.record(
                "removed",
                suggestion_id=manifest.suggestion_id,
                path=entry.original,
                sha256=entry.sha256,
            )

    def _discard(self, staging_dir: Path, archive_path: Path | None) -> None:
        if archive_path is not None:
            archive_path.unlink(missing_ok=True)
        if staging_dir.exists():
            shutil.rmtree(staging_dir)
            logger.info("Removed failed staging directory %s", staging_dir)

    async def _record_failure(self, suggestion_id: int, error: Exception) -> None:
        logger.warning("Suggestion %d not applied: %s", suggestion_id, error)
        self._oplog.record("failed", suggestion_id=suggestion_id, error=str(error))
        async with self._session_factory() as session:
            suggestion = await self._load(session, suggestion_id)
            suggestion.last_error = str(error)
            suggestion.updated_at = utcnow()
            await session.commit()

    # ------------------------------------------------------------------
    # Undo
    # ------------------------------------------------------------------

    async def undo(self, suggestion_id: int) -> Suggestion:
        """Restore every entry of a completed suggestion's manifest.

        An accepted suggestion whose removal of originals stopped part-way
        can be undone too.  The manifest and every staged copy are verified
        before anything is written; a corrupted manifest raises
        :class:`ManifestCorruptedError` and nothing is restored.
        """
        async with self._session_factory() as session:
            suggestion = await self._load(session, suggestion_id)
            interrupted = (
                suggestion.status == SuggestionStatus.ACCEPTED and bool(suggestion.staging_dir)
            )
            if suggestion.status != SuggestionStatus.COMPLETED and not interrupted:
                msg = (
                    f"Suggestion {suggestion_id} is {suggestion.status}; "
                    "only completed suggestions can be undone"
                )
                raise InvalidTransitionError(msg)
            staging_value = suggestion.staging_dir

        if not staging_value:
            msg = f"Suggestion {suggestion_id} has no staging directory"
            raise ManifestCorruptedError(msg)
        staging_dir = Path(staging_value)
        await asyncio.to_thread(self._restore, staging_dir)

        async with self._session_factory() as session:
            suggestion = await self._load(session, suggestion_id)
            transition(suggestion, SuggestionStatus.REVERTED)
            await session.commit()
        logger.info("Suggestion %d reverted from %s", suggestion_id, staging_dir)
        return suggestion

    def verify_manifest(self, staging_dir: Path) -> StagingManifest:
        """Load the manifest and check every staged copy against it."""
        manifest = StagingManifest.load(staging_dir)
        if manifest.state not in (ManifestState.COMPLETED, ManifestState.REMOVING):
            msg = f"Manifest in {staging_dir} is {manifest.state}, not completed"
            raise ManifestCorruptedError(msg)
        for entry in manifest.entries:
            staged = staging_dir / entry.staged
            if not staged.is_file():
                msg = f"Staged copy {staged} is missing"
                raise ManifestCorruptedError(msg)
            if sha256_file(staged) != entry.sha256:
                msg = f"Staged copy {staged} does not match its manifest checksum"
                raise ManifestCorruptedError(msg)
        return manifest

    def _restore(self, staging_dir: Path) -> None:
        manifest = self.verify_manifest(staging_dir)
        token = uuid.uuid4().hex[:8]

        # Phase 1: verified temporary copies beside each original
        temps: list[tuple[Path, Path]] = []
        try:
            for entry in manifest.entries:
                original = Path(entry.original)
                original.parent.mkdir(parents=True, exist_ok=True)
                temp = original.with_name(f".{original.name}.restore-{token}")
                shutil.copy2(staging_dir / entry.staged, temp)
                temps.append((temp, original))
                if sha256_file(temp) != entry.sha256:
                    msg = f"Restored copy of {original} does not match its checksum"
                    raise ChecksumMismatchError(msg)
        except (StagingError, OSError):
            for temp, _ in temps:
                temp.unlink(missing_ok=True)
            raise

        # Phase 2: atomic replace
        for (temp, original), entry in zip(temps, manifest.entries, strict=True):
            os.replace(temp, original)
            self._oplog.record(
                "restored",
                suggestion_id=manifest.suggestion_id,
                path=str(original),
                sha256=entry.sha256,
            )

        if manifest.archive_path:
            archive = Path(manifest.archive_path)
            if archive.exists():
                archive.unlink()
                self._oplog.record(
                    "archive_removed",
                    suggestion_id=manifest.suggestion_id,
                    archive=str(archive),
                    sha256=manifest.archive_sha256,
                )
        manifest.state = ManifestState.RESTORED
        manifest.write(staging_dir)

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    async def purge_expired(self, now: datetime | None = None) -> list[Path]:
        """Delete staging directories older than the retention window.

        A directory whose manifest is still ``removing`` holds the only copies
        of files removed before a failure; it is kept until undone.
        """
        return await asyncio.to_thread(self._purge, now or utcnow())

    def _purge(self, now: datetime) -> list[Path]:
        root = self._config.staging_dir
        if not root.exists():
            return []
        cutoff = ensure_utc(now) - timedelta(seconds=self._config.retention_seconds)
        purged: list[Path] = []
        for staging_dir in sorted(p for p in root.iterdir() if p.is_dir()):
            try:
                manifest: StagingManifest | None = StagingManifest.load(staging_dir)
                created = ensure_utc(datetime.fromisoformat(manifest.created_at))
            except (ManifestCorruptedError, ValueError):
                manifest = None
                created = datetime.fromtimestamp(staging_dir.stat().st_mtime, tz=cutoff.tzinfo)
            if created >= cutoff:
                continue
            if manifest is not None and manifest.state is ManifestState.REMOVING:
                logger.warning(
                    "Keeping %s: removal stopped part-way and was not undone", staging_dir
                )
                continue
            for entry in manifest.entries if manifest else []:
                self._oplog.record(
                    "purged",
                    suggestion_id=manifest.suggestion_id,
                    path=entry.original,
                    sha256=entry.sha256,
                )
            if manifest is None:
                self._oplog.record("purged", staging_dir=str(staging_dir), sha256=None)
            shutil.rmtree(staging_dir)
            purged.append(staging_dir)
            logger.info("Purged expired staging directory %s", staging_dir)
        return purged

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _load(session: AsyncSession, suggestion_id: int) -> Suggestion:
        suggestion = await session.get(Suggestion, suggestion_id)
        if suggestion is None:
            msg = f"Suggestion {suggestion_id} not found"
            raise SuggestionNotFoundError(msg)
        return suggestion
