from __future__ import annotations

from datetime import datetime
from typing import Any, AsyncContextManager, Dict, List, Mapping, Optional, Protocol, Sequence
from uuid import UUID

from order_tracker.core.stages import Stage
from order_tracker.schemas.tracking import (
    AccountRead,
    Actor,
    AuditLogEntryRead,
    OrderFilter,
    OrderItemRead,
    OrderRead,
    StatusEventRead,
)


class TrackingRepository(Protocol):
    """
    Persistence operations consumed by the lifecycle services.

    Mutating calls that must be atomic are made inside `atomic(*keys)`; the keys
    name the entities whose writers must be serialized (e.g. "item:<id>").
    Implementations commit when the block exits normally and roll back on any
    exception, cancellation included.
    """

    def atomic(self, *keys: str) -> AsyncContextManager[Any]:
        ...

    async def get_account(self, account_id: UUID) -> Optional[AccountRead]:
        ...

    async def delete_account(self, account_id: UUID) -> None:
        ...

    async def get_order(self, order_id: UUID) -> Optional[OrderRead]:
        ...

    async def update_order(self, order_id: UUID, fields: Mapping[str, Any]) -> OrderRead:
        ...

    async def list_orders(self, order_filter: OrderFilter) -> List[OrderRead]:
        ...

    async def list_orders_for_account(self, account_id: UUID) -> List[OrderRead]:
        ...

    async def get_item(self, item_id: UUID) -> Optional[OrderItemRead]:
        ...

    async def list_items_for_order(self, order_id: UUID) -> List[OrderItemRead]:
        ...

    async def update_item(self, item_id: UUID, fields: Mapping[str, Any]) -> OrderItemRead:
        ...

    async def append_status_event(
        self,
        *,
        order_id: UUID,
        item_id: Optional[UUID],
        stage: Stage,
        note: Optional[str],
        created_at: datetime,
    ) -> StatusEventRead:
        ...

    async def list_status_events(
        self,
        *,
        item_ids: Optional[Sequence[UUID]] = None,
        order_ids: Optional[Sequence[UUID]] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> List[StatusEventRead]:
        """Events ordered by (created_at, id) ascending."""
        ...

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
        ...

    async def list_audit_entries(self, entity_type: str, entity_id: str) -> List[AuditLogEntryRead]:
        """Entries for one entity ordered by (created_at, id) ascending."""
        ...

    async def list_recent_audit_entries(self, *, limit: int, offset: int) -> List[AuditLogEntryRead]:
        """Entries across all entities, newest first."""
        ...
