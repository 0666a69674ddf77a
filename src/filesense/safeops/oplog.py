"""OperationLog — append-only JSON-lines audit trail of filesystem mutations."""

from __future__ import annotations

import json
import logging
import os
import threading
from collections import deque
from pathlib import Path
from typing import Any

from filesense.utils import utcnow

logger = logging.getLogger(__name__)


class OperationLog:
    """Records staging, archive, removal, restore and purge events.

    One JSON object per line with an ISO-8601 ``timestamp`` and an
    ``event`` name.  When the file would exceed *max_bytes* it is rotated
    to ``<name>.1`` (older files shift up) and at most *backups* rotated
    files are kept.
    """

    def __init__(self, path: Path, *, max_bytes: int = 10 * 1024 * 1024, backups: int = 5) -> None:
        self._path = Path(path)
        self._max_bytes = max_bytes
        self._backups = backups
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def record(self, event: str, **fields: Any) -> dict[str, Any]:
        """Append one event and return it."""
        entry = {"timestamp": utcnow().isoformat(), "event": event, **fields}
        line = json.dumps(entry, default=str) + "\n"
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            if self._should_rotate(len(line.encode())):
                self._rotate()
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)
        return entry

    def recent(self, n: int = 50) -> list[dict[str, Any]]:
        """The last *n* events, oldest first, reading into rotated files if needed."""
        if n <= 0:
            return []
        tail: deque[dict[str, Any]] = deque(maxlen=n)
        for path in reversed(self._files()):
            for line in path.read_text(encoding="utf-8").splitlines():
                if not line.strip():
                    continue
                try:
                    tail.append(json.loads(line))
                except ValueError:
                    logger.warning("Skipping unreadable operation log line in %s", path)
        return list(tail)

    # ------------------------------------------------------------------
    # Rotation
    # ------------------------------------------------------------------

    def _rotated(self, index: int) -> Path:
        return self._path.with_name(f"{self._path.name}.{index}")

    def _files(self) -> list[Path]:
        """Current file first, then rotated files newest to oldest."""
        paths = [self._path, *(self._rotated(i) for i in range(1, self._backups + 1))]
        return [p for p in paths if p.exists()]

    def _should_rotate(self, incoming: int) -> bool:
        try:
            size = self._path.stat().st_size
        except FileNotFoundError:
            return False
        return size > 0 and size + incoming > self._max_bytes

    def _rotate(self) -> None:
        if self._backups <= 0:
            self._path.unlink(missing_ok=True)
            return
        self._rotated(self._backups).unlink(missing_ok=True)
        for index in range(self._backups - 1, 0, -1):
            source = self._rotated(index)
            if source.exists():
                os.replace(source, self._rotated(index + 1))
        os.replace(self._path, self._rotated(1))
