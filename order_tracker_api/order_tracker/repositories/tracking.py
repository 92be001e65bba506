from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence
from uuid import UUID, uuid4

from sqlalchemy import delete, select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from order_tracker.core.errors import NotFoundError, ReferentialConstraintError
from order_tracker.core.stages import Stage
from order_tracker.db.models.accounts import Account
from order_tracker.db.models.audit import AuditLogEntry
from order_tracker.db.models.orders import Order, OrderItem, StatusEvent
from order_tracker.schemas.tracking import (
    AccountRead,
    Actor,
    AuditLogEntryRead,
    OrderFilter,
    OrderItemRead,
    OrderRead,
    StatusEventRead,
)
from .base import BaseRepository, column_value

logger = logging.getLogger(__name__)

def _audit_to_read(row: AuditLogEntry) -> AuditLogEntryRead:
    return AuditLogEntryRead(
        id=row.id,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        action=row.action,
        metadata=dict(row.payload or {}),
        performed_by_id=row.performed_by_id,
        performed_by_name=row.performed_by_name,
        created_at=row.created_at,
    )


class SqlAlchemyTrackingRepository(BaseRepository):
    """
    TrackingRepository backed by PostgreSQL through an AsyncSession.

    Reads always repopulate identity-map objects so a unit of work never sees
    values cached by an earlier transaction on the same session.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session)

    # Unit of work
    @asynccontextmanager
    async def atomic(self, *keys: str) -> AsyncIterator["SqlAlchemyTrackingRepository"]:
        """
        Run the block in one transaction holding an advisory lock per key.

        Keys are locked in sorted order so two units sharing keys cannot deadlock
        on each other. Conflicts reported by Postgres become ConcurrencyConflictError.
        """
        if self.session.in_transaction():
            # Reads issued before the unit autobegin a transaction; close it first.
            await self.session.commit()
        try:
            async with self.session.begin():
                await self.lock_keys(keys)
                yield self
        except IntegrityError:
            raise
        except DBAPIError as exc:
            conflict = self.conflict_from(exc, keys)
            if conflict is not None:
                raise conflict from exc
            raise

    # Accounts
    async def get_account(self, account_id: UUID) -> Optional[AccountRead]:
        row = await self.fresh(Account, account_id)
        return AccountRead.model_validate(row) if row else None

    async def delete_account(self, account_id: UUID) -> None:
        stmt = delete(Account).where(Account.id == account_id)
        try:
            result = await self.execute(stmt)
        except IntegrityError as exc:
            # An order was inserted after the guard's check.
            raise ReferentialConstraintError(
                "Cannot delete account due to existing orders.",
                details={"account_id": str(account_id)},
            ) from exc
        if result.rowcount == 0:
            raise NotFoundError("Account", account_id)

    # Orders
    def _order_select(self):
        return (
            select(Order)
            .options(selectinload(Order.items))
            .execution_options(populate_existing=True)
        )

    async def get_order(self, order_id: UUID) -> Optional[OrderRead]:
        row = await self.scalar_one_or_none(self._order_select().where(Order.id == order_id))
        return OrderRead.model_validate(row) if row else None

    async def update_order(self, order_id: UUID, fields: Mapping[str, Any]) -> OrderRead:
        row = await self.scalar_one_or_none(self._order_select().where(Order.id == order_id))
        if row is None:
            raise NotFoundError("Order", order_id)
        await self.assign(row, fields)
        return OrderRead.model_validate(row)

    async def list_orders(self, order_filter: OrderFilter) -> List[OrderRead]:
        stmt = self._order_select()
        if order_filter.date_from is not None:
            stmt = stmt.where(Order.created_at >= order_filter.date_from)
        if order_filter.date_to is not None:
            stmt = stmt.where(Order.created_at <= order_filter.date_to)
        if order_filter.account_id is not None:
            stmt = stmt.where(Order.account_id == order_filter.account_id)
        if order_filter.rep_id is not None:
            stmt = stmt.where(Order.rep_id == order_filter.rep_id)
        if order_filter.stages:
            stmt = stmt.where(Order.current_stage.in_([s.value for s in order_filter.stages]))
        stmt = stmt.order_by(Order.created_at.asc(), Order.id.asc())
        orders = []
        for row in await self.scalars(stmt):
            order = OrderRead.model_validate(row)
            orders.append(order.model_copy(update={"items": order_filter.select_items(order.items)}))
        return orders

    async def list_orders_for_account(self, account_id: UUID) -> List[OrderRead]:
        stmt = (
            self._order_select()
            .where(Order.account_id == account_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
        )
        return [OrderRead.model_validate(row) for row in await self.scalars(stmt)]

    # Items
    async def get_item(self, item_id: UUID) -> Optional[OrderItemRead]:
        row = await self.fresh(OrderItem, item_id)
        return OrderItemRead.model_validate(row) if row else None

    async def list_items_for_order(self, order_id: UUID) -> List[OrderItemRead]:
        stmt = (
            select(OrderItem)
            .where(OrderItem.order_id == order_id)
            .order_by(OrderItem.created_at.asc(), OrderItem.id.asc())
            .execution_options(populate_existing=True)
        )
        return [OrderItemRead.model_validate(row) for row in await self.scalars(stmt)]

    async def update_item(self, item_id: UUID, fields: Mapping[str, Any]) -> OrderItemRead:
        row = await self.fresh(OrderItem, item_id)
        if row is None:
            raise NotFoundError("OrderItem", item_id)
        await self.assign(row, fields)
        return OrderItemRead.model_validate(row)

    # Stage history
    async def append_status_event(
        self,
        *,
        order_id: UUID,
        item_id: Optional[UUID],
        stage: Stage,
        note: Optional[str],
        created_at: datetime,
    ) -> StatusEventRead:
        event = StatusEvent(
            id=uuid4(),
            order_id=order_id,
            item_id=item_id,
            stage=column_value(stage),
            note=note,
            created_at=created_at,
        )
        await self.add(event)
        return StatusEventRead.model_validate(event)

    async def list_status_events(
        self,
        *,
        item_ids: Optional[Sequence[UUID]] = None,
        order_ids: Optional[Sequence[UUID]] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> List[StatusEventRead]:
        stmt = select(StatusEvent)
        if item_ids is not None:
            stmt = stmt.where(StatusEvent.item_id.in_(list(item_ids)))
        if order_ids is not None:
            stmt = stmt.where(StatusEvent.order_id.in_(list(order_ids)))
        if date_from is not None:
            stmt = stmt.where(StatusEvent.created_at >= date_from)
        if date_to is not None:
            stmt = stmt.where(StatusEvent.created_at <= date_to)
        stmt = stmt.order_by(StatusEvent.created_at.asc(), StatusEvent.id.asc())
        return [StatusEventRead.model_validate(row) for row in await self.scalars(stmt)]

    # Audit trail
    async def append_audit_entry(
        self,
        *,
        entity_type: str,
        entity_id: str,
        action: str,
        metadata: Dict[str, Any],
        actor: Actor,
        created_at: datetime,
    ) -> AuditLogEntryRead:
        entry = AuditLogEntry(
            id=uuid4(),
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            payload=metadata,
            performed_by_id=actor.id,
            performed_by_name=actor.display_name,
            created_at=created_at,
        )
        await self.add(entry)
        return _audit_to_read(entry)

    async def list_audit_entries(self, entity_type: str, entity_id: str) -> List[AuditLogEntryRead]:
        stmt = (
            select(AuditLogEntry)
            .where(AuditLogEntry.entity_type == entity_type, AuditLogEntry.entity_id == entity_id)
            .order_by(AuditLogEntry.created_at.asc(), AuditLogEntry.id.asc())
        )
        return [_audit_to_read(row) for row in await self.scalars(stmt)]

    async def list_recent_audit_entries(self, *, limit: int, offset: int) -> List[AuditLogEntryRead]:
        stmt = (
            select(AuditLogEntry)
            .order_by(AuditLogEntry.created_at.desc(), AuditLogEntry.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return [_audit_to_read(row) for row in await self.scalars(stmt)]
