"""
In-memory TrackingRepository used by the service and route tests.

atomic() serializes writers with a single lock and restores a snapshot of the
whole store when the block raises, which is what the SQL repository gets from
a transaction plus advisory locks.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence
from uuid import UUID, uuid4

from order_tracker.core.errors import ConcurrencyConflictError, NotFoundError, ReferentialConstraintError
from order_tracker.core.stages import Stage, parse_stage
from order_tracker.schemas.tracking import (
    AccountRead,
    Actor,
    AuditLogEntryRead,
    OrderFilter,
    OrderItemRead,
    OrderRead,
    StatusEventRead,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryTrackingRepository:
    def __init__(self) -> None:
        self.accounts: Dict[UUID, AccountRead] = {}
        self.orders: Dict[UUID, OrderRead] = {}
        self.items: Dict[UUID, OrderItemRead] = {}
        self.events: List[StatusEventRead] = []
        self.audit: List[AuditLogEntryRead] = []
        self._lock: Optional[asyncio.Lock] = None
        # Fault injection
        self.conflicts_to_raise = 0
        self.fail_audit_writes = False
        self.atomic_calls: List[tuple] = []

    # Seeding helpers
    def add_account(self, name: str = "Acme Corp", **fields: Any) -> AccountRead:
        now = fields.pop("created_at", utcnow())
        account = AccountRead(id=uuid4(), name=name, created_at=now, updated_at=now, **fields)
        self.accounts[account.id] = account
        return account

    def add_order(
        self,
        account_id: UUID,
        po_number: str = "PO-1",
        created_at: Optional[datetime] = None,
        current_stage: Stage = Stage.NEW,
        **fields: Any,
    ) -> OrderRead:
        now = created_at or utcnow()
        order = OrderRead(
            id=uuid4(),
            po_number=po_number,
            account_id=account_id,
            current_stage=current_stage,
            created_at=now,
            updated_at=now,
            **fields,
        )
        self.orders[order.id] = order
        return order

    def add_item(
        self,
        order_id: UUID,
        product_code: str = "WIDGET",
        current_stage: Stage = Stage.NEW,
        created_at: Optional[datetime] = None,
        **fields: Any,
    ) -> OrderItemRead:
        now = created_at or utcnow()
        item = OrderItemRead(
            id=uuid4(),
            order_id=order_id,
            product_code=product_code,
            current_stage=current_stage,
            created_at=now,
            updated_at=now,
            **fields,
        )
        self.items[item.id] = item
        return item

    def add_event(self, item: OrderItemRead, stage: Stage, created_at: datetime, note: Optional[str] = None) -> StatusEventRead:
        event = StatusEventRead(
            id=uuid4(), order_id=item.order_id, item_id=item.id, stage=stage, note=note, created_at=created_at
        )
        self.events.append(event)
        return event

    # Unit of work
    @asynccontextmanager
    async def atomic(self, *keys: str):
        if self._lock is None:
            self._lock = asyncio.Lock()
        self.atomic_calls.append(keys)
        if self.conflicts_to_raise > 0:
            self.conflicts_to_raise -= 1
            raise ConcurrencyConflictError("simulated conflict", details={"keys": list(keys)})
        async with self._lock:
            snapshot = (dict(self.accounts), dict(self.orders), dict(self.items), list(self.events), list(self.audit))
            try:
                yield self
            except BaseException:
                self.accounts, self.orders, self.items, self.events, self.audit = snapshot
                raise

    # Accounts
    async def get_account(self, account_id: UUID) -> Optional[AccountRead]:
        await asyncio.sleep(0)
        return self.accounts.get(account_id)

    async def delete_account(self, account_id: UUID) -> None:
        if account_id not in self.accounts:
            raise NotFoundError("Account", account_id)
        if any(o.account_id == account_id for o in self.orders.values()):
            raise ReferentialConstraintError("Cannot delete account due to existing orders.")
        del self.accounts[account_id]

    # Orders
    def _with_items(self, order: OrderRead) -> OrderRead:
        items = sorted(
            (i for i in self.items.values() if i.order_id == order.id),
            key=lambda i: (i.created_at, str(i.id)),
        )
        return order.model_copy(update={"items": items})

    async def get_order(self, order_id: UUID) -> Optional[OrderRead]:
        await asyncio.sleep(0)
        order = self.orders.get(order_id)
        return self._with_items(order) if order else None

    async def update_order(self, order_id: UUID, fields: Mapping[str, Any]) -> OrderRead:
        order = self.orders.get(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        values = dict(fields)
        if "current_stage" in values:
            values["current_stage"] = parse_stage(values["current_stage"])
        self.orders[order_id] = order.model_copy(update={**values, "updated_at": utcnow()})
        return self._with_items(self.orders[order_id])

    async def list_orders(self, order_filter: OrderFilter) -> List[OrderRead]:
        await asyncio.sleep(0)
        orders = [self._with_items(o) for o in self.orders.values()]
        orders = [o for o in orders if order_filter.matches_order(o)]
        orders.sort(key=lambda o: (o.created_at, str(o.id)))
        return [o.model_copy(update={"items": order_filter.select_items(o.items)}) for o in orders]

    async def list_orders_for_account(self, account_id: UUID) -> List[OrderRead]:
        await asyncio.sleep(0)
        orders = [self._with_items(o) for o in self.orders.values() if o.account_id == account_id]
        return sorted(orders, key=lambda o: (o.created_at, str(o.id)), reverse=True)

    # Items
    async def get_item(self, item_id: UUID) -> Optional[OrderItemRead]:
        await asyncio.sleep(0)
        return self.items.get(item_id)

    async def list_items_for_order(self, order_id: UUID) -> List[OrderItemRead]:
        await asyncio.sleep(0)
        return sorted(
            (i for i in self.items.values() if i.order_id == order_id),
            key=lambda i: (i.created_at, str(i.id)),
        )

    async def update_item(self, item_id: UUID, fields: Mapping[str, Any]) -> OrderItemRead:
        item = self.items.get(item_id)
        if item is None:
            raise NotFoundError("OrderItem", item_id)
        values = dict(fields)
        if "current_stage" in values:
            values["current_stage"] = parse_stage(values["current_stage"])
        self.items[item_id] = item.model_copy(update={**values, "updated_at": utcnow()})
        return self.items[item_id]

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
        event = StatusEventRead(
            id=uuid4(), order_id=order_id, item_id=item_id, stage=stage, note=note, created_at=created_at
        )
        self.events.append(event)
        return event

    async def list_status_events(
        self,
        *,
        item_ids: Optional[Sequence[UUID]] = None,
        order_ids: Optional[Sequence[UUID]] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> List[StatusEventRead]:
        await asyncio.sleep(0)
        events = list(self.events)
        if item_ids is not None:
            events = [e for e in events if e.item_id in set(item_ids)]
        if order_ids is not None:
            events = [e for e in events if e.order_id in set(order_ids)]
        if date_from is not None:
            events = [e for e in events if e.created_at >= date_from]
        if date_to is not None:
            events = [e for e in events if e.created_at <= date_to]
        return sorted(events, key=lambda e: (e.created_at, str(e.id)))

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
        if self.fail_audit_writes:
            raise RuntimeError("audit store unavailable")
        # Keep entries strictly ordered even when the clock does not move.
        if self.audit and created_at <= self.audit[-1].created_at:
            created_at = self.audit[-1].created_at + timedelta(microseconds=1)
        entry = AuditLogEntryRead(
            id=uuid4(),
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            metadata=metadata,
            performed_by_id=actor.id,
            performed_by_name=actor.display_name,
            created_at=created_at,
        )
        self.audit.append(entry)
        return entry

    async def list_audit_entries(self, entity_type: str, entity_id: str) -> List[AuditLogEntryRead]:
        await asyncio.sleep(0)
        entries = [e for e in self.audit if e.entity_type == entity_type and e.entity_id == entity_id]
        return sorted(entries, key=lambda e: (e.created_at, str(e.id)))

    async def list_recent_audit_entries(self, *, limit: int, offset: int) -> List[AuditLogEntryRead]:
        await asyncio.sleep(0)
        entries = sorted(self.audit, key=lambda e: (e.created_at, str(e.id)), reverse=True)
        return entries[offset : offset + limit]
