"""Shared fixtures for filesense tests."""

from __future__ import annotations

import hashlib
import math
import os
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

import filesense.models  # noqa: F401  (registers every table on SQLModel.metadata)
from filesense.models.files import FileRecord
from filesense.utils import ensure_utc, utcnow

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncEngine


# ------------------------------------------------------------------
# Fake embedding provider (deterministic, fast)
# ------------------------------------------------------------------

_FAKE_DIM = 32


class FakeProvider:
    """Deterministic embedding provider that hashes text into a vector."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    def embed(self, text: str) -> list[float]:
        return self._hash_to_vector(text)

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        return [self._hash_to_vector(t) for t in texts]

    @property
    def model_name(self) -> str:
        return "fake-test-model"

    @staticmethod
    def _hash_to_vector(text: str) -> list[float]:
        h = hashlib.sha256(text.encode()).digest()
        raw = [float(b) for b in h]
        norm = math.sqrt(sum(x * x for x in raw))
        return [x / norm for x in raw]


# ------------------------------------------------------------------
# Database
# ------------------------------------------------------------------


@pytest.fixture
async def async_engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """File-backed async SQLite engine with all tables created."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> Callable[..., AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


# ------------------------------------------------------------------
# Files on disk plus their index rows
# ------------------------------------------------------------------


@pytest.fixture
def root(tmp_path: Path) -> Path:
    r = tmp_path / "root"
    r.mkdir()
    return r


@pytest.fixture
def add_file(
    session_factory: Callable[..., AsyncSession], root: Path
) -> Callable[..., Awaitable[FileRecord]]:
    """Write a file under *root* and index it, returning the committed record."""

    async def _add(
        rel: str,
        content: str | bytes = "",
        *,
        modified_at: datetime | None = None,
        drive_id: str = "drive-a",
        write: bool = True,
    ) -> FileRecord:
        path = root / rel
        data = content.encode() if isinstance(content, str) else content
        mtime = ensure_utc(modified_at) if modified_at is not None else utcnow()
        if write:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
            ts = mtime.timestamp()
            os.utime(path, (ts, ts))
        record = FileRecord(
            path=str(path),
            name=path.name,
            extension=path.suffix.lower() or None,
            size_bytes=len(data),
            modified_at=mtime,
            parent_path=str(path.parent),
            drive_id=drive_id,
            indexed_at=utcnow(),
        )
        async with session_factory() as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)
        return record

    return _add


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()
