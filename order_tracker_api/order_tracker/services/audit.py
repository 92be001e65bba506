from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from order_tracker.repositories.interface import TrackingRepository
from order_tracker.schemas.tracking import Actor, AuditLogEntryRead
from order_tracker.services.base import BaseService

logger = logging.getLogger(__name__)


class AuditAction:
    """Stable action codes written to the audit trail."""

    ITEM_STAGE_CHANGED = "ITEM_STAGE_CHANGED"
    ITEM_STAGE_NOTE_ADDED = "ITEM_STAGE_NOTE_ADDED"
    ORDER_STAGE_CHANGED = "ORDER_STAGE_CHANGED"
    MEASUREMENTS_UPDATED = "MEASUREMENTS_UPDATED"
    ITEM_ARCHIVED = "ITEM_ARCHIVED"
    ITEM_RESTORED = "ITEM_RESTORED"
    ACCOUNT_DELETED = "ACCOUNT_DELETED"


class EntityType:
    """Entity type names used as audit trail keys."""

    ACCOUNT = "Account"
    ORDER = "Order"
    ORDER_ITEM = "OrderItem"


class AuditLogger(BaseService):
    """
    Append-only audit trail.

    `record` must be called inside the caller's atomic unit when the entry is tied
    to a mutation, so the entry commits or rolls back with it. There is no update
    or delete operation.
    """

    def __init__(self, repository: TrackingRepository) -> None:
        super().__init__(repository)

    # PUBLIC_INTERFACE
    async def record(
        self,
        entity_type: str,
        entity_id: UUID | str,
        action: str,
        metadata: Optional[Dict[str, Any]],
        actor: Actor,
    ) -> AuditLogEntryRead:
        """
        Append one audit entry attributed to `actor`.

        Persistence failures propagate so the surrounding unit rolls back.
        """
        entry = await self.repository.append_audit_entry(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            metadata=dict(metadata or {}),
            actor=actor,
            created_at=datetime.now(timezone.utc),
        )
        logger.debug("Audit %s recorded for %s %s", action, entity_type, entity_id)
        return entry

    # PUBLIC_INTERFACE
    async def history(self, entity_type: str, entity_id: UUID | str) -> Tuple[AuditLogEntryRead, ...]:
        """Entries for one entity, oldest first, as an immutable tuple."""
        entries = await self.repository.list_audit_entries(entity_type, str(entity_id))
        return tuple(entries)

    # PUBLIC_INTERFACE
    async def recent(self, limit: int = 50, offset: int = 0) -> Tuple[AuditLogEntryRead, ...]:
        """Newest-first page across all entities."""
        entries = await self.repository.list_recent_audit_entries(limit=limit, offset=offset)
        return tuple(entries)
