"""Safe operations — staged, verified, undoable changes to the user's files."""

from filesense.safeops.archive import create_archive, verify_archive
from filesense.safeops.manager import SafeOpsManager
from filesense.safeops.manifest import (
    MANIFEST_NAME,
    ManifestEntry,
    ManifestState,
    StagingManifest,
)
from filesense.safeops.oplog import OperationLog

__all__ = [
    "MANIFEST_NAME",
    "ManifestEntry",
    "ManifestState",
    "OperationLog",
    "SafeOpsManager",
    "StagingManifest",
    "create_archive",
    "verify_archive",
]
