"""Dialect-aware SQL helpers — upsert keyed on a unique constraint."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

_ROWS_PER_STATEMENT = 100


def get_dialect(engine: Engine | AsyncEngine) -> str:
    """Return 'sqlite', 'postgresql', or the raw dialect name."""
    # AsyncEngine wraps a sync engine
    sync_engine = getattr(engine, "sync_engine", engine)
    name = sync_engine.dialect.name
    if name in ("postgresql", "postgres"):
        return "postgresql"
    return name


def session_dialect(session: AsyncSession) -> str:
    """Dialect of the engine *session* is bound to."""
    return get_dialect(session.bind)  # type: ignore[arg-type]


async def upsert_rows(
    session: AsyncSession,
    model: type,
    rows: list[dict[str, Any]],
    conflict_keys: list[str],
    update_keys: list[str] | None = None,
) -> int:
    """Insert *rows* into *model*'s table, updating on a *conflict_keys* clash.

    On conflict only *update_keys* are overwritten (defaults to every
    non-conflict column present in the rows), so columns such as
    ``created_at`` survive recomputation.  Returns the rowcount.

    - SQLite/PostgreSQL: INSERT ... ON CONFLICT DO UPDATE
    """
    if not rows:
        return 0

    dialect = session_dialect(session)
    if dialect == "postgresql":
        from sqlalchemy.dialects import postgresql as dialect_module
    elif dialect == "sqlite":
        from sqlalchemy.dialects import sqlite as dialect_module
    else:
        msg = f"Upsert is not supported for dialect {dialect!r}"
        raise ValueError(msg)

    columns = update_keys
    if columns is None:
        columns = [k for k in rows[0] if k not in conflict_keys]

    total = 0
    # Bounded statements keep SQLite under its bound-parameter limit
    for start in range(0, len(rows), _ROWS_PER_STATEMENT):
        stmt = dialect_module.insert(model).values(rows[start : start + _ROWS_PER_STATEMENT])
        if columns:
            stmt = stmt.on_conflict_do_update(
                index_elements=conflict_keys,
                set_={k: stmt.excluded[k] for k in columns},
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=conflict_keys)

        result = await session.execute(stmt)
        total += result.rowcount or 0
    return total
