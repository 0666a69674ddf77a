"""ContentHasher — sha256 fingerprints for duplicate detection."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from sqlalchemy import delete as sa_delete
from sqlmodel import select

from filesense.config import GraphConfig
from filesense.dialect import upsert_rows
from filesense.models.files import FileRecord
from filesense.models.hashes import FileContentHash
from filesense.utils import ensure_utc, sha256_file, utcnow

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from filesense.scheduler import CancellationToken

logger = logging.getLogger(__name__)

_COMMIT_EVERY = 200


def content_fingerprint(path: str | Path, ceiling: int) -> str | None:
    """sha256 of the file at *path*, or None if it is missing or larger than *ceiling*."""
    p = Path(path)
    try:
        if p.stat().st_size > ceiling:
            return None
        return sha256_file(p)
    except OSError as e:
        logger.debug("Cannot hash %s: %s", p, e)
        return None


class ContentHasher:
    """Keeps ``file_content_hashes`` in step with the file index.

    A fingerprint is (re)computed when a file has none or was modified
    after its fingerprint was taken.  Oversized or unreadable files lose
    any stale fingerprint so they never count as duplicates.
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncSession],
        config: GraphConfig | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config or GraphConfig()

    async def stale_records(self) -> list[FileRecord]:
        """Files with no fingerprint or one older than their modification time."""
        async with self._session_factory() as session:
            records = list((await session.execute(select(FileRecord))).scalars().all())
            computed = {
                row[0]: ensure_utc(row[1])
                for row in (
                    await session.execute(
                        select(FileContentHash.file_id, FileContentHash.computed_at)
                    )
                ).all()
            }
        return [
            r
            for r in sorted(records, key=lambda r: r.id)
            if r.id not in computed or ensure_utc(r.modified_at) > computed[r.id]
        ]

    async def refresh(self, cancel: CancellationToken | None = None) -> int:
        """Fingerprint every stale file.  Returns the number of rows written."""
        stale = await self.stale_records()
        written = 0
        rows: list[dict] = []
        dropped: list[int] = []
        for record in stale:
            if cancel is not None and cancel.cancelled:
                break
            fingerprint = await asyncio.to_thread(
                content_fingerprint, record.path, self._config.hash_ceiling_bytes
            )
            if fingerprint is None:
                dropped.append(record.id)  # type: ignore[arg-type]
                continue
            rows.append({"file_id": record.id, "fingerprint": fingerprint, "computed_at": utcnow()})
            if len(rows) >= _COMMIT_EVERY:
                written += await self._flush(rows, dropped)
                rows, dropped = [], []
        written += await self._flush(rows, dropped)
        if written:
            logger.info("Fingerprinted %d files", written)
        return written

    async def _flush(self, rows: list[dict], dropped: list[int]) -> int:
        if not rows and not dropped:
            return 0
        async with self._session_factory() as session:
            if dropped:
                await session.execute(
                    sa_delete(FileContentHash).where(FileContentHash.file_id.in_(dropped))
                )
            await upsert_rows(session, FileContentHash, rows, ["file_id"])
            await session.commit()
        return len(rows)

    async def fingerprints(self) -> dict[int, str]:
        """Current ``file_id → fingerprint`` map."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(FileContentHash.file_id, FileContentHash.fingerprint)
            )
            return {row[0]: row[1] for row in result.all()}
