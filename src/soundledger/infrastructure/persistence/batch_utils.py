# Hey future me - these helpers make duplicate inserts HARMLESS.
#
# Our whole concurrency story is "unique constraints + ignore the loser":
#   - two syncLikedPlaylist calls for the same user race → both try to insert the same
#     membership → one wins, the other must be a no-op, NOT an IntegrityError
#   - two list_accessible_catalog calls materialize the same subscription grants
#
# On SQLite and PostgreSQL we use INSERT ... ON CONFLICT DO NOTHING (one statement,
# no lock held longer than needed). Anything else falls back to per-row SAVEPOINTs.
"""Conflict-tolerant bulk insert utilities."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from typing import Any, TypeVar

from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from soundledger.infrastructure.persistence.models import Base

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLite caps bound parameters per statement; 500 rows x ~6 columns stays well below it
DEFAULT_CHUNK_SIZE = 500


def chunked(items: Sequence[T], size: int = DEFAULT_CHUNK_SIZE) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most `size` items."""
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _dialect_name(session: AsyncSession) -> str:
    return session.get_bind().dialect.name


async def insert_ignore_duplicates(
    session: AsyncSession,
    model: type[Base],
    rows: Sequence[dict[str, Any]],
    conflict_columns: Sequence[str],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> int:
    """Insert rows, silently skipping those that violate the given unique key.

    Args:
        session: Database session (caller commits)
        model: ORM model class to insert into
        rows: Column -> value dicts; pass every column explicitly, Python-side
              defaults are not guaranteed for multi-row inserts
        conflict_columns: Columns of the unique constraint to tolerate
        chunk_size: Rows per INSERT statement

    Returns:
        Number of rows actually inserted
    """
    if not rows:
        return 0

    dialect = _dialect_name(session)
    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as dialect_insert
    elif dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    else:
        return await _insert_with_savepoints(session, model, rows)

    inserted = 0
    for chunk in chunked(rows, chunk_size):
        stmt = (
            dialect_insert(model)
            .values(list(chunk))
            .on_conflict_do_nothing(index_elements=list(conflict_columns))
        )
        result = await session.execute(stmt)
        inserted += max(result.rowcount or 0, 0)  # type: ignore[attr-defined]

    skipped = len(rows) - inserted
    if skipped:
        logger.debug(
            "Skipped %d duplicate %s rows", skipped, model.__tablename__
        )
    return inserted


async def _insert_with_savepoints(
    session: AsyncSession, model: type[Base], rows: Sequence[dict[str, Any]]
) -> int:
    """Row-by-row fallback for dialects without ON CONFLICT."""
    inserted = 0
    for row in rows:
        try:
            async with session.begin_nested():
                await session.execute(insert(model).values(**row))
            inserted += 1
        except IntegrityError:
            logger.debug("Duplicate %s row ignored: %s", model.__tablename__, row)
    return inserted
