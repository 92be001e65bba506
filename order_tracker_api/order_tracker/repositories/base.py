from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional, Type, TypeVar

from sqlalchemy import Executable, select, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from order_tracker.core.errors import ConcurrencyConflictError
from order_tracker.core.stages import Stage

logger = logging.getLogger(__name__)

M = TypeVar("M")

# serialization_failure, deadlock_detected, lock_not_available
CONFLICT_SQLSTATES = {"40001", "40P01", "55P03"}


def sqlstate_of(exc: DBAPIError) -> Optional[str]:
    """SQLSTATE of the driver error wrapped by SQLAlchemy (asyncpg or psycopg)."""
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def column_value(value: Any) -> Any:
    """Stages are stored as their text value."""
    return value.value if isinstance(value, Stage) else value


class BaseRepository:
    """
    Base class for repositories providing common helpers.

    Note:
      Repositories never commit on their own; the unit of work is owned by the
      caller (see TrackingRepository.atomic).
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def execute(self, statement: Executable, params: Optional[dict[str, Any]] = None):
        """Execute a SQLAlchemy statement."""
        return await self.session.execute(statement, params or {})

    async def scalars(self, statement: Executable, params: Optional[dict[str, Any]] = None):
        """Execute and return scalars."""
        result = await self.execute(statement, params)
        return result.scalars()

    async def scalar_one_or_none(self, statement: Executable, params: Optional[dict[str, Any]] = None):
        """Execute and return a single scalar or None."""
        result = await self.execute(statement, params)
        return result.scalar_one_or_none()

    async def fresh(self, model: Type[M], entity_id: Any) -> Optional[M]:
        """Load one row by primary key, overwriting any copy cached in the session."""
        stmt = select(model).where(model.id == entity_id).execution_options(populate_existing=True)
        return await self.scalar_one_or_none(stmt)

    async def assign(self, row: M, fields: Mapping[str, Any]) -> M:
        """Set columns on a loaded row, flush, and reload server-side defaults."""
        for name, value in fields.items():
            setattr(row, name, column_value(value))
        await self.session.flush()
        await self.session.refresh(row)
        return row

    async def add(self, entity: Any) -> None:
        """Add a single entity to session and flush it."""
        self.session.add(entity)
        await self.session.flush()

    async def lock_keys(self, keys: Iterable[str]) -> None:
        """
        Take a transaction-scoped advisory lock per key, in sorted order.

        Sorting means two units sharing keys always queue instead of deadlocking.
        """
        for key in sorted(set(keys)):
            await self.execute(text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": key})

    @staticmethod
    def conflict_from(exc: DBAPIError, keys: Iterable[str]) -> Optional[ConcurrencyConflictError]:
        """Map lock timeouts, deadlocks and serialization failures to a conflict error."""
        state = sqlstate_of(exc)
        if state not in CONFLICT_SQLSTATES:
            return None
        logger.warning("Atomic unit aborted by the database (keys=%s, sqlstate=%s)", list(keys), state)
        return ConcurrencyConflictError(
            "The record is being modified by another request; try again.",
            details={"keys": list(keys)},
        )
