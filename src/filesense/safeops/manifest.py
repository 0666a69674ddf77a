"""StagingManifest — the JSON record that makes an accepted operation undoable."""

from __future__ import annotations

import hashlib
import json
import os
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

from filesense.exceptions import ManifestCorruptedError

MANIFEST_NAME = "manifest.json"
FILES_DIR = "files"


class ManifestState(StrEnum):
    STAGED = "staged"
    REMOVING = "removing"
    """Originals are being removed; some may already be gone."""
    COMPLETED = "completed"
    RESTORED = "restored"


@dataclass(frozen=True, slots=True)
class ManifestEntry:
    """One staged copy.  ``staged`` is relative to the staging directory."""

    original: str
    staged: str
    sha256: str
    size_bytes: int = 0


@dataclass
class StagingManifest:
    suggestion_id: int
    kind: str
    created_at: str
    entries: list[ManifestEntry] = field(default_factory=list)
    state: ManifestState = ManifestState.STAGED
    archive_path: str | None = None
    archive_sha256: str | None = None
    digest: str = ""

    def compute_digest(self) -> str:
        """sha256 over the entries; any edit to an entry changes it."""
        payload = json.dumps(
            [[e.original, e.staged, e.sha256] for e in self.entries],
            separators=(",", ":"),
        )
        return hashlib.sha256(payload.encode()).hexdigest()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = str(self.state)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StagingManifest:
        try:
            entries = [ManifestEntry(**entry) for entry in data["entries"]]
            manifest = cls(
                suggestion_id=int(data["suggestion_id"]),
                kind=str(data["kind"]),
                created_at=str(data["created_at"]),
                entries=entries,
                state=ManifestState(data["state"]),
                archive_path=data.get("archive_path"),
                archive_sha256=data.get("archive_sha256"),
                digest=str(data["digest"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            msg = f"Manifest is missing or has malformed fields: {e}"
            raise ManifestCorruptedError(msg) from e
        return manifest

    def write(self, staging_dir: Path) -> Path:
        """Seal the digest and write atomically into *staging_dir*."""
        self.digest = self.compute_digest()
        path = staging_dir / MANIFEST_NAME
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(self.to_dict(), indent=2))
        os.replace(tmp, path)
        return path

    @classmethod
    def load(cls, staging_dir: Path) -> StagingManifest:
        """Read and validate the manifest in *staging_dir*.

        Raises :class:`ManifestCorruptedError` when the file is missing,
        unparseable, incomplete, or its digest does not match its entries.
        """
        path = staging_dir / MANIFEST_NAME
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError as e:
            msg = f"No manifest in {staging_dir}"
            raise ManifestCorruptedError(msg) from e
        except (OSError, ValueError) as e:
            msg = f"Unreadable manifest {path}: {e}"
            raise ManifestCorruptedError(msg) from e
        if not isinstance(data, dict):
            msg = f"Manifest {path} is not a JSON object"
            raise ManifestCorruptedError(msg)
        manifest = cls.from_dict(data)
        if manifest.digest != manifest.compute_digest():
            msg = f"Manifest {path} digest does not match its entries"
            raise ManifestCorruptedError(msg)
        return manifest
