"""Dialect-aware INSERT ... ON CONFLICT helpers.

Both helpers rely on a unique constraint to decide whether a row was created,
so concurrent duplicates resolve in the database rather than in Python.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

_INSERT_FACTORIES = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def dialect_insert(db: AsyncSession, model: Any) -> Any:
    """Return an INSERT construct supporting ON CONFLICT for the session's dialect."""
    dialect = db.get_bind().dialect.name
    try:
        factory = _INSERT_FACTORIES[dialect]
    except KeyError:
        msg = f"ON CONFLICT inserts are not supported for dialect {dialect!r}"
        raise NotImplementedError(msg) from None
    return factory(model)


async def insert_if_absent(
    db: AsyncSession,
    model: Any,
    values: dict[str, Any],
    conflict_columns: list[str],
) -> bool:
    """Insert a row unless it violates ``conflict_columns``.

    Returns True only when a new row was actually created.
    """
    stmt = (
        dialect_insert(db, model)
        .values(**values)
        .on_conflict_do_nothing(index_elements=conflict_columns)
        .returning(*(getattr(model, column) for column in conflict_columns))
    )
    result = await db.execute(stmt)
    return result.first() is not None


async def increment_or_create(
    db: AsyncSession,
    model: Any,
    values: dict[str, Any],
    conflict_columns: list[str],
    counter: str,
) -> None:
    """Insert ``values`` or add ``values[counter]`` to the existing row's counter."""
    stmt = dialect_insert(db, model).values(**values)
    column = getattr(model, counter)
    stmt = stmt.on_conflict_do_update(
        index_elements=conflict_columns,
        set_={counter: column + getattr(stmt.excluded, counter)},
    )
    await db.execute(stmt)
