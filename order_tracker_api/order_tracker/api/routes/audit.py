from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Path, Query

from order_tracker.core.deps import get_repository, require_roles
from order_tracker.repositories.interface import TrackingRepository
from order_tracker.schemas.tracking import AuditLogEntryRead
from order_tracker.services.audit import AuditLogger

router = APIRouter(prefix="/audit", tags=["Audit"])


# PUBLIC_INTERFACE
@router.get(
    "",
    response_model=List[AuditLogEntryRead],
    summary="Recent audit entries",
    description="Audit entries across all entities, newest first.",
    dependencies=[Depends(require_roles("admin"))],
)
async def list_recent_audit_entries(
    repository: TrackingRepository = Depends(get_repository),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> List[AuditLogEntryRead]:
    audit = AuditLogger(repository)
    return list(await audit.recent(limit=limit, offset=offset))


# PUBLIC_INTERFACE
@router.get(
    "/{entity_type}/{entity_id}",
    response_model=List[AuditLogEntryRead],
    summary="Entity audit history",
    description="Audit history of one entity (e.g. OrderItem, Order, Account), oldest first.",
    dependencies=[Depends(require_roles("admin"))],
)
async def get_entity_history(
    entity_type: str = Path(..., description="Entity type, e.g. OrderItem"),
    entity_id: str = Path(..., description="Entity id"),
    repository: TrackingRepository = Depends(get_repository),
) -> List[AuditLogEntryRead]:
    audit = AuditLogger(repository)
    return list(await audit.history(entity_type, entity_id))
