"""Index a directory into a FileSense database and run one maintenance pass.

Walks a directory, writes one ``file_records`` row per file (the part an
external indexer normally does), then runs hashing, embedding, edge
analysis, entropy scoring and suggestion detection, and prints what it
found.

Usage:
    uv run python scripts/index_directory.py ~/Documents
    uv run python scripts/index_directory.py ~/Documents --no-embeddings
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import select

from filesense import FileRecord, FileSense, FileSenseConfig, StagingConfig
from filesense.exceptions import EmbeddingUnavailableError
from filesense.search.embedding_client import EmbeddingClient

SKIP_DIRS = {
    ".git", ".venv", "__pycache__", ".pytest_cache", ".mypy_cache",
    ".ruff_cache", "node_modules", ".idea", ".Trash",
}


class NullProvider:
    """Stands in for the embedding endpoint when ``--no-embeddings`` is given."""

    def embed(self, text: str) -> list[float]:
        raise EmbeddingUnavailableError("embeddings disabled")

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        raise EmbeddingUnavailableError("embeddings disabled")

    @property
    def model_name(self) -> str:
        return "none"


def collect_files(root: Path) -> list[Path]:
    """Every regular, non-hidden file under *root* outside skipped directories."""
    files: list[Path] = []
    for p in sorted(root.rglob("*")):
        if any(part in SKIP_DIRS for part in p.parts):
            continue
        if p.name.startswith(".") or not p.is_file():
            continue
        files.append(p)
    return files


async def index_files(session_factory, files: list[Path], drive_id: str) -> int:
    """Insert rows for files not yet indexed; returns how many were added."""
    async with session_factory() as session:
        known = set((await session.execute(select(FileRecord.path))).scalars().all())
        added = 0
        for p in files:
            path = str(p)
            if path in known:
                continue
            try:
                stat = p.stat()
            except OSError:
                continue
            session.add(
                FileRecord(
                    path=path,
                    name=p.name,
                    extension=p.suffix.lower() or None,
                    size_bytes=stat.st_size,
                    modified_at=datetime.fromtimestamp(stat.st_mtime, tz=UTC),
                    parent_path=str(p.parent),
                    drive_id=drive_id,
                )
            )
            added += 1
        await session.commit()
    return added


async def run(root: Path, data_dir: Path, *, embeddings: bool) -> None:
    data_dir.mkdir(parents=True, exist_ok=True)
    db_path = data_dir / "filesense.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    config = FileSenseConfig(staging=StagingConfig(data_dir=data_dir))
    provider = EmbeddingClient(config.embedding) if embeddings else NullProvider()

    print(f"Root:      {root}")
    print(f"Database:  {db_path}")
    print()

    async with FileSense(engine, config=config, embedding_provider=provider) as fs:
        await fs.create_tables()

        files = collect_files(root)
        added = await index_files(session_factory, files, drive_id=root.anchor or "/")
        print(f"Found {len(files)} files, indexed {added} new\n")

        if embeddings and not await provider.is_available():
            print(f"Embedding endpoint {config.embedding.base_url} is not reachable;")
            print("the pass will skip embeddings and similarity edges.\n")

        print("=" * 60)
        print("PASS")
        print("=" * 60)
        result = await fs.run_pass()
        print(f"  Directories scored: {result.directories_done}/{result.directories_total}")
        coverage = await fs.embedding_coverage()
        print(f"  Embedding coverage: {coverage.embedded_files}/{coverage.total_files}")
        print(f"  Duplicate pairs:    {len(await fs.duplicates())}")
        print()

        print("=" * 60)
        print("SUGGESTIONS")
        print("=" * 60)
        suggestions = await fs.list_suggestions()
        if not suggestions:
            print("  (none)")
        for s in suggestions:
            print(f"  [{s.id}] {s.kind:<12} {s.confidence:.2f}  {s.reason}")
            for path in s.affected_paths[:5]:
                print(f"        {path}")
            if len(s.affected_paths) > 5:
                print(f"        ... and {len(s.affected_paths) - 5} more")

        if embeddings:
            await provider.close()
    await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("root", type=Path, help="directory to index")
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=Path.home() / ".filesense",
        help="where the database, staging area and operation log live",
    )
    parser.add_argument(
        "--no-embeddings",
        action="store_true",
        help="skip the embedding endpoint entirely",
    )
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    root = args.root.expanduser().resolve()
    asyncio.run(run(root, args.data_dir, embeddings=not args.no_embeddings))


if __name__ == "__main__":
    main()
