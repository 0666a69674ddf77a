"""Compressed archives of staged copies, verified member by member."""

from __future__ import annotations

import hashlib
import tarfile
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

    from filesense.safeops.manifest import StagingManifest

_CHUNK = 1024 * 1024


def create_archive(staging_dir: Path, manifest: StagingManifest, archive_path: Path) -> Path:
    """Pack every staged copy of *manifest* into a ``.tar.gz`` at *archive_path*."""
    archive_path.parent.mkdir(parents=True, exist_ok=True)
    with tarfile.open(archive_path, "w:gz") as tar:
        for entry in manifest.entries:
            tar.add(staging_dir / entry.staged, arcname=entry.staged, recursive=False)
    return archive_path


def verify_archive(archive_path: Path, manifest: StagingManifest) -> list[str]:
    """Compare every archive member with its manifest checksum.

    Returns a description of each problem; an empty list means the archive
    holds exactly the manifest's content.
    """
    problems: list[str] = []
    try:
        with tarfile.open(archive_path, "r:gz") as tar:
            for entry in manifest.entries:
                try:
                    member = tar.getmember(entry.staged)
                except KeyError:
                    problems.append(f"{entry.staged}: missing from archive")
                    continue
                handle = tar.extractfile(member)
                if handle is None:
                    problems.append(f"{entry.staged}: not a regular file in archive")
                    continue
                digest = hashlib.sha256()
                with handle:
                    while chunk := handle.read(_CHUNK):
                        digest.update(chunk)
                if digest.hexdigest() != entry.sha256:
                    problems.append(f"{entry.staged}: checksum mismatch")
    except (OSError, tarfile.TarError) as e:
        problems.append(f"{archive_path}: unreadable archive ({e})")
    return problems
