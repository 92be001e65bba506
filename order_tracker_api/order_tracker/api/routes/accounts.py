from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Path
from fastapi.responses import JSONResponse

from order_tracker.core.deps import get_current_actor, get_repository, require_roles
from order_tracker.repositories.interface import TrackingRepository
from order_tracker.schemas.accounts import DeletionCheck
from order_tracker.schemas.tracking import Actor
from order_tracker.services.deletion_guard import DeletionGuard

router = APIRouter(prefix="/accounts", tags=["Accounts"])


# PUBLIC_INTERFACE
@router.get(
    "/{account_id}/deletion-check",
    response_model=DeletionCheck,
    summary="Check account deletion",
    description="Whether the account can be deleted and, if not, which orders block it (newest three).",
)
async def check_account_deletion(
    account_id: UUID = Path(..., description="Account id"),
    repository: TrackingRepository = Depends(get_repository),
    actor: Actor = Depends(get_current_actor),
) -> DeletionCheck:
    guard = DeletionGuard(repository)
    return await guard.can_delete_account(account_id)


# PUBLIC_INTERFACE
@router.delete(
    "/{account_id}",
    response_model=DeletionCheck,
    summary="Delete account",
    description="Delete an account that has no orders. Responds 409 with the blocking orders otherwise.",
    responses={409: {"model": DeletionCheck, "description": "Deletion blocked by existing orders"}},
)
async def delete_account(
    account_id: UUID = Path(..., description="Account id"),
    repository: TrackingRepository = Depends(get_repository),
    actor: Actor = Depends(require_roles("admin")),
):
    guard = DeletionGuard(repository)
    check = await guard.delete_account(account_id, actor)
    if not check.ok:
        return JSONResponse(status_code=409, content=check.model_dump(mode="json", by_alias=True))
    return check
