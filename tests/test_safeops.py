"""Tests for staging, archiving, undo, retention and the operation log."""

from __future__ import annotations

import json
import tarfile
from datetime import timedelta
from pathlib import Path

import pytest

from filesense.config import StagingConfig
from filesense.exceptions import (
    ChecksumMismatchError,
    InvalidTransitionError,
    ManifestCorruptedError,
    StagingError,
)
from filesense.models.suggestions import Suggestion, SuggestionKind, SuggestionStatus
from filesense.safeops import (
    MANIFEST_NAME,
    ManifestEntry,
    ManifestState,
    OperationLog,
    SafeOpsManager,
    StagingManifest,
    create_archive,
    verify_archive,
)
from filesense.utils import sha256_file, utcnow


@pytest.fixture
def staging_config(tmp_path: Path) -> StagingConfig:
    return StagingConfig(data_dir=tmp_path / "data")


@pytest.fixture
def manager(session_factory, staging_config) -> SafeOpsManager:
    return SafeOpsManager(session_factory, staging_config)


@pytest.fixture
def docs(tmp_path: Path) -> list[Path]:
    folder = tmp_path / "docs"
    folder.mkdir()
    paths = []
    for name, body in (("notes.txt", "first draft"), ("budget.csv", "a,b\n1,2\n")):
        path = folder / name
        path.write_text(body)
        paths.append(path)
    return paths


async def _suggest(
    session_factory,
    kind: SuggestionKind,
    paths: list[Path],
    kept: dict[Path, Path] | None = None,
) -> int:
    async with session_factory() as session:
        row = Suggestion(
            kind=kind,
            subject=str(paths[0].parent),
            affected_paths_json=json.dumps([str(p) for p in paths]),
            kept_paths_json=json.dumps({str(k): str(v) for k, v in (kept or {}).items()}),
            reason="test",
            confidence=0.5,
            fingerprint=f"{kind}-{len(paths)}",
        )
        session.add(row)
        await session.commit()
        return row.id


def _events(manager: SafeOpsManager) -> list[str]:
    return [e["event"] for e in manager.oplog.recent(1000)]


# ==================================================================
# Accept
# ==================================================================


class TestAcceptSnapshot:
    @pytest.mark.asyncio
    async def test_organize_keeps_originals(self, manager, session_factory, docs):
        sid = await _suggest(session_factory, SuggestionKind.ORGANIZE, docs)

        done = await manager.accept(sid)

        assert done.status == SuggestionStatus.COMPLETED
        assert all(p.exists() for p in docs)
        staging_dir = Path(done.staging_dir)
        manifest = StagingManifest.load(staging_dir)
        assert manifest.state is ManifestState.COMPLETED
        assert [e.original for e in manifest.entries] == [str(p) for p in docs]
        assert manifest.archive_path is None
        assert "completed" in _events(manager)

    @pytest.mark.asyncio
    async def test_directory_path_expands_to_files(self, manager, session_factory, docs):
        folder = docs[0].parent
        (folder / "sub").mkdir()
        (folder / "sub" / "deep.txt").write_text("deep")
        sid = await _suggest(session_factory, SuggestionKind.FLATTEN, [folder])

        done = await manager.accept(sid)

        manifest = StagingManifest.load(Path(done.staging_dir))
        assert len(manifest.entries) == 3

    @pytest.mark.asyncio
    async def test_missing_path_leaves_suggestion_accepted(
        self, manager, session_factory, staging_config, docs
    ):
        docs[1].unlink()
        sid = await _suggest(session_factory, SuggestionKind.RENAME, docs)

        with pytest.raises(StagingError, match="no longer exists"):
            await manager.accept(sid)

        async with session_factory() as session:
            row = await session.get(Suggestion, sid)
        assert row.status == SuggestionStatus.ACCEPTED
        assert "no longer exists" in row.last_error
        assert not list(staging_config.staging_dir.glob("*"))

    @pytest.mark.asyncio
    async def test_completed_cannot_be_accepted_again(self, manager, session_factory, docs):
        sid = await _suggest(session_factory, SuggestionKind.ORGANIZE, docs)
        await manager.accept(sid)
        with pytest.raises(InvalidTransitionError):
            await manager.accept(sid)


class TestAcceptArchive:
    @pytest.mark.asyncio
    async def test_archive_removes_originals_after_verification(
        self, manager, session_factory, staging_config, docs
    ):
        expected = {str(p): sha256_file(p) for p in docs}
        sid = await _suggest(session_factory, SuggestionKind.ARCHIVE, docs)

        done = await manager.accept(sid)

        assert not any(p.exists() for p in docs)
        manifest = StagingManifest.load(Path(done.staging_dir))
        archive = Path(manifest.archive_path)
        assert archive.parent == staging_config.archive_dir
        assert verify_archive(archive, manifest) == []
        assert {e.original: e.sha256 for e in manifest.entries} == expected

        events = _events(manager)
        assert events.count("staged") == 2
        assert events.count("removed") == 2
        assert events.index("archived") < events.index("removed")

    @pytest.mark.asyncio
    async def test_failed_verification_keeps_originals(
        self, manager, session_factory, staging_config, docs, monkeypatch
    ):
        monkeypatch.setattr(
            "filesense.safeops.manager.verify_archive",
            lambda archive, manifest: ["files/0-notes.txt: checksum mismatch"],
        )
        sid = await _suggest(session_factory, SuggestionKind.ARCHIVE, docs)

        with pytest.raises(ChecksumMismatchError, match="failed verification"):
            await manager.accept(sid)

        assert all(p.exists() for p in docs)
        assert not list(staging_config.archive_dir.glob("*.tar.gz"))
        async with session_factory() as session:
            row = await session.get(Suggestion, sid)
        assert row.status == SuggestionStatus.ACCEPTED
        assert "checksum mismatch" in row.last_error
        assert "removed" not in _events(manager)

        # a failed attempt may be retried
        monkeypatch.undo()
        done = await manager.accept(sid)
        assert done.status == SuggestionStatus.COMPLETED
        assert done.last_error is None

    @pytest.mark.asyncio
    async def test_deduplicate_removes_redundant_copy(self, manager, session_factory, docs):
        copy = docs[0].with_name("notes copy.txt")
        copy.write_text("first draft")
        sid = await _suggest(session_factory, SuggestionKind.DEDUPLICATE, [copy], {copy: docs[0]})
        done = await manager.accept(sid)
        assert docs[0].exists()
        assert not copy.exists()
        assert StagingManifest.load(Path(done.staging_dir)).archive_path is None

    @pytest.mark.asyncio
    async def test_deduplicate_aborts_when_copy_edited_after_detection(
        self, manager, session_factory, staging_config, docs
    ):
        copy = docs[0].with_name("notes copy.txt")
        copy.write_text("first draft")
        sid = await _suggest(session_factory, SuggestionKind.DEDUPLICATE, [copy], {copy: docs[0]})
        copy.write_text("second draft, now the only copy")

        with pytest.raises(ChecksumMismatchError, match="no longer matches the kept copy"):
            await manager.accept(sid)

        assert copy.read_text() == "second draft, now the only copy"
        assert "removed" not in _events(manager)
        assert not list(staging_config.staging_dir.glob("*"))
        async with session_factory() as session:
            row = await session.get(Suggestion, sid)
        assert row.status == SuggestionStatus.ACCEPTED
        assert "kept copy" in row.last_error

    @pytest.mark.asyncio
    async def test_deduplicate_aborts_when_kept_copy_edited(self, manager, session_factory, docs):
        copy = docs[0].with_name("notes copy.txt")
        copy.write_text("first draft")
        sid = await _suggest(session_factory, SuggestionKind.DEDUPLICATE, [copy], {copy: docs[0]})
        docs[0].write_text("rewritten")

        with pytest.raises(ChecksumMismatchError):
            await manager.accept(sid)

        assert copy.exists()

    @pytest.mark.asyncio
    async def test_deduplicate_without_kept_copy_refused(self, manager, session_factory, docs):
        sid = await _suggest(session_factory, SuggestionKind.DEDUPLICATE, [docs[1]])

        with pytest.raises(ChecksumMismatchError, match="No kept copy"):
            await manager.accept(sid)

        assert docs[1].exists()


class TestInterruptedRemoval:
    @pytest.fixture
    def flaky_remove(self, monkeypatch) -> list[Path]:
        """Remove the first original, then fail on the next one."""
        calls: list[Path] = []

        def remove(path: Path) -> None:
            calls.append(path)
            if len(calls) > 1:
                raise PermissionError(f"cannot remove {path}")
            path.unlink()

        monkeypatch.setattr("filesense.safeops.manager._remove_original", remove)
        return calls

    @pytest.mark.asyncio
    async def test_staging_recorded_before_removal(
        self, manager, session_factory, docs, flaky_remove
    ):
        sid = await _suggest(session_factory, SuggestionKind.ARCHIVE, docs)

        with pytest.raises(StagingError, match="stopped part-way"):
            await manager.accept(sid)

        assert not docs[0].exists()
        assert docs[1].exists()
        async with session_factory() as session:
            row = await session.get(Suggestion, sid)
        assert row.status == SuggestionStatus.ACCEPTED
        assert row.staging_dir is not None
        assert "cannot remove" in row.last_error
        manifest = StagingManifest.load(Path(row.staging_dir))
        assert manifest.state is ManifestState.REMOVING

    @pytest.mark.asyncio
    async def test_undo_restores_after_partial_removal(
        self, manager, session_factory, docs, flaky_remove
    ):
        contents = {p: p.read_bytes() for p in docs}
        sid = await _suggest(session_factory, SuggestionKind.ARCHIVE, docs)
        with pytest.raises(StagingError):
            await manager.accept(sid)

        with pytest.raises(StagingError, match="undo"):
            await manager.accept(sid)
        reverted = await manager.undo(sid)

        assert reverted.status == SuggestionStatus.REVERTED
        for path, body in contents.items():
            assert path.read_bytes() == body
        manifest = StagingManifest.load(Path(reverted.staging_dir))
        assert manifest.state is ManifestState.RESTORED
        assert not Path(manifest.archive_path).exists()

    @pytest.mark.asyncio
    async def test_purge_keeps_partial_removal(
        self, manager, session_factory, docs, flaky_remove
    ):
        sid = await _suggest(session_factory, SuggestionKind.ARCHIVE, docs)
        with pytest.raises(StagingError):
            await manager.accept(sid)
        async with session_factory() as session:
            staging_dir = Path((await session.get(Suggestion, sid)).staging_dir)

        assert await manager.purge_expired(utcnow() + timedelta(days=30)) == []
        assert (staging_dir / "files" / "0-notes.txt").exists()


# ==================================================================
# Undo
# ==================================================================


class TestUndo:
    @pytest.mark.asyncio
    async def test_archive_round_trip(self, manager, session_factory, docs):
        contents = {p: p.read_bytes() for p in docs}
        sid = await _suggest(session_factory, SuggestionKind.ARCHIVE, docs)
        done = await manager.accept(sid)
        archive = Path(StagingManifest.load(Path(done.staging_dir)).archive_path)

        reverted = await manager.undo(sid)

        assert reverted.status == SuggestionStatus.REVERTED
        for path, body in contents.items():
            assert path.read_bytes() == body
        assert not archive.exists()
        manifest = StagingManifest.load(Path(done.staging_dir))
        assert manifest.state is ManifestState.RESTORED
        assert "archive_removed" in _events(manager)

    @pytest.mark.asyncio
    async def test_snapshot_undo_restores_content(self, manager, session_factory, docs):
        sid = await _suggest(session_factory, SuggestionKind.ORGANIZE, docs)
        await manager.accept(sid)
        docs[0].write_text("overwritten")

        await manager.undo(sid)

        assert docs[0].read_text() == "first draft"
        assert not list(docs[0].parent.glob(".*.restore-*"))

    @pytest.mark.asyncio
    async def test_corrupted_manifest_restores_nothing(self, manager, session_factory, docs):
        sid = await _suggest(session_factory, SuggestionKind.ARCHIVE, docs)
        done = await manager.accept(sid)
        manifest_path = Path(done.staging_dir) / MANIFEST_NAME
        data = json.loads(manifest_path.read_text())
        data["entries"][0]["original"] = "/etc/elsewhere"
        manifest_path.write_text(json.dumps(data))

        with pytest.raises(ManifestCorruptedError, match="digest"):
            await manager.undo(sid)

        assert not any(p.exists() for p in docs)
        async with session_factory() as session:
            row = await session.get(Suggestion, sid)
        assert row.status == SuggestionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_tampered_staged_copy(self, manager, session_factory, docs):
        sid = await _suggest(session_factory, SuggestionKind.ORGANIZE, docs)
        done = await manager.accept(sid)
        staged = Path(done.staging_dir) / "files" / "0-notes.txt"
        staged.write_text("tampered")

        with pytest.raises(ManifestCorruptedError, match="checksum"):
            await manager.undo(sid)

    @pytest.mark.asyncio
    async def test_only_completed_can_be_undone(self, manager, session_factory, docs):
        sid = await _suggest(session_factory, SuggestionKind.ORGANIZE, docs)
        with pytest.raises(InvalidTransitionError, match="only completed"):
            await manager.undo(sid)

        await manager.accept(sid)
        await manager.undo(sid)
        with pytest.raises(InvalidTransitionError):
            await manager.undo(sid)


# ==================================================================
# Retention
# ==================================================================


class TestPurge:
    @pytest.mark.asyncio
    async def test_expired_staging_removed(self, manager, session_factory, docs):
        sid = await _suggest(session_factory, SuggestionKind.ORGANIZE, docs)
        done = await manager.accept(sid)
        staging_dir = Path(done.staging_dir)

        assert await manager.purge_expired(utcnow()) == []
        purged = await manager.purge_expired(utcnow() + timedelta(days=8))

        assert purged == [staging_dir]
        assert not staging_dir.exists()
        assert _events(manager).count("purged") == 2

    @pytest.mark.asyncio
    async def test_unreadable_manifest_uses_mtime(self, manager, staging_config):
        stray = staging_config.staging_dir / "stray"
        stray.mkdir(parents=True)
        (stray / MANIFEST_NAME).write_text("{not json")

        purged = await manager.purge_expired(utcnow() + timedelta(days=30))

        assert purged == [stray]

    @pytest.mark.asyncio
    async def test_nothing_staged(self, manager):
        assert await manager.purge_expired() == []


# ==================================================================
# Manifest and archive
# ==================================================================


def _manifest(entries: list[ManifestEntry] | None = None) -> StagingManifest:
    return StagingManifest(
        suggestion_id=3,
        kind="archive",
        created_at=utcnow().isoformat(),
        entries=entries or [ManifestEntry(original="/a/x.txt", staged="files/0-x.txt",
                                          sha256="0" * 64, size_bytes=1)],
    )


class TestStagingManifest:
    def test_write_then_load(self, tmp_path: Path):
        manifest = _manifest()
        manifest.write(tmp_path)
        loaded = StagingManifest.load(tmp_path)
        assert loaded == manifest
        assert not (tmp_path / "manifest.json.tmp").exists()

    def test_missing(self, tmp_path: Path):
        with pytest.raises(ManifestCorruptedError, match="No manifest"):
            StagingManifest.load(tmp_path)

    def test_not_an_object(self, tmp_path: Path):
        (tmp_path / MANIFEST_NAME).write_text("[1, 2]")
        with pytest.raises(ManifestCorruptedError, match="not a JSON object"):
            StagingManifest.load(tmp_path)

    def test_missing_fields(self, tmp_path: Path):
        (tmp_path / MANIFEST_NAME).write_text('{"suggestion_id": 1}')
        with pytest.raises(ManifestCorruptedError, match="malformed"):
            StagingManifest.load(tmp_path)


class TestArchive:
    def test_verify_detects_mismatch(self, tmp_path: Path):
        staging = tmp_path / "s"
        (staging / "files").mkdir(parents=True)
        (staging / "files" / "0-x.txt").write_text("x")
        good = sha256_file(staging / "files" / "0-x.txt")
        entry = ManifestEntry(original="/a/x.txt", staged="files/0-x.txt", sha256=good)
        manifest = _manifest([entry])
        archive = create_archive(staging, manifest, tmp_path / "out" / "a.tar.gz")

        assert tarfile.is_tarfile(archive)
        assert verify_archive(archive, manifest) == []

        wrong = _manifest([ManifestEntry(original="/a/x.txt", staged="files/0-x.txt",
                                         sha256="f" * 64)])
        assert verify_archive(archive, wrong) == ["files/0-x.txt: checksum mismatch"]

        missing = _manifest([ManifestEntry(original="/a/y.txt", staged="files/1-y.txt",
                                           sha256=good)])
        assert verify_archive(archive, missing) == ["files/1-y.txt: missing from archive"]

    def test_unreadable_archive(self, tmp_path: Path):
        bogus = tmp_path / "bogus.tar.gz"
        bogus.write_text("not gzip")
        (problem,) = verify_archive(bogus, _manifest())
        assert "unreadable archive" in problem


# ==================================================================
# Operation log
# ==================================================================


class TestOperationLog:
    def test_record_and_recent(self, tmp_path: Path):
        log = OperationLog(tmp_path / "ops.jsonl")
        log.record("staged", path="/a", sha256="abc")
        log.record("removed", path="/a", sha256="abc")

        entries = log.recent()
        assert [e["event"] for e in entries] == ["staged", "removed"]
        assert entries[0]["path"] == "/a"
        assert "timestamp" in entries[0]
        assert log.recent(0) == []

    def test_rotation_bounded(self, tmp_path: Path):
        log = OperationLog(tmp_path / "ops.jsonl", max_bytes=300, backups=2)
        for i in range(40):
            log.record("staged", path=f"/file/{i}", sha256="x" * 32)

        assert (tmp_path / "ops.jsonl.1").exists()
        assert (tmp_path / "ops.jsonl.2").exists()
        assert not (tmp_path / "ops.jsonl.3").exists()
        assert (tmp_path / "ops.jsonl").stat().st_size <= 300

        tail = log.recent(3)
        assert [e["path"] for e in tail] == ["/file/37", "/file/38", "/file/39"]

    def test_unreadable_line_skipped(self, tmp_path: Path):
        path = tmp_path / "ops.jsonl"
        path.write_text('{"event": "staged"}\nnot json\n')
        assert [e["event"] for e in OperationLog(path).recent()] == ["staged"]
