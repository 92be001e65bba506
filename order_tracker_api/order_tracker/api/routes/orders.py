from __future__ import annotations

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Path

from order_tracker.core.deps import get_current_actor, get_repository
from order_tracker.core.errors import NotFoundError
from order_tracker.repositories.interface import TrackingRepository
from order_tracker.schemas.orders import (
    BulkMeasurementRequest,
    BulkMeasurementResult,
    MeasurementPatch,
    MeasurementUpdateResult,
    Regression,
    StageChangeRequest,
    TransitionResult,
)
from order_tracker.schemas.tracking import Actor, OrderRead
from order_tracker.services.measurements import MeasurementService
from order_tracker.services.stage_engine import StageTransitionEngine

router = APIRouter(prefix="/orders", tags=["Orders"])


# PUBLIC_INTERFACE
@router.post(
    "/items/{item_id}/stage",
    response_model=TransitionResult,
    summary="Change item stage",
    description=(
        "Move an order item to another production stage. Moving backwards is recorded as a regression; "
        "moving to the current stage writes nothing unless a note is given."
    ),
)
async def change_item_stage(
    payload: StageChangeRequest,
    item_id: UUID = Path(..., description="Order item id"),
    repository: TrackingRepository = Depends(get_repository),
    actor: Actor = Depends(get_current_actor),
) -> TransitionResult:
    engine = StageTransitionEngine(repository)
    return await engine.transition(item_id, payload.target_stage, actor, note=payload.note)


# PUBLIC_INTERFACE
@router.get(
    "/items/{item_id}/regressions",
    response_model=List[Regression],
    summary="Item regressions",
    description="Every backwards stage move in the item's history, oldest first.",
)
async def list_item_regressions(
    item_id: UUID = Path(..., description="Order item id"),
    repository: TrackingRepository = Depends(get_repository),
    actor: Actor = Depends(get_current_actor),
) -> List[Regression]:
    engine = StageTransitionEngine(repository)
    return await engine.regressions_for_item(item_id)


# PUBLIC_INTERFACE
@router.post(
    "/items/{item_id}/archive",
    response_model=OrderRead,
    summary="Archive item",
    description="Soft-delete an item. The order stage is re-derived from the remaining items.",
)
async def archive_item(
    item_id: UUID = Path(..., description="Order item id"),
    repository: TrackingRepository = Depends(get_repository),
    actor: Actor = Depends(get_current_actor),
) -> OrderRead:
    engine = StageTransitionEngine(repository)
    return await engine.set_item_archived(item_id, True, actor)


# PUBLIC_INTERFACE
@router.post(
    "/items/{item_id}/restore",
    response_model=OrderRead,
    summary="Restore item",
    description="Restore an archived item. The order stage is re-derived.",
)
async def restore_item(
    item_id: UUID = Path(..., description="Order item id"),
    repository: TrackingRepository = Depends(get_repository),
    actor: Actor = Depends(get_current_actor),
) -> OrderRead:
    engine = StageTransitionEngine(repository)
    return await engine.set_item_archived(item_id, False, actor)


# PUBLIC_INTERFACE
@router.get(
    "/{order_id}",
    response_model=OrderRead,
    summary="Get order",
    description="Get an order with all of its items, archived ones included.",
)
async def get_order(
    order_id: UUID = Path(..., description="Order id"),
    repository: TrackingRepository = Depends(get_repository),
    actor: Actor = Depends(get_current_actor),
) -> OrderRead:
    order = await repository.get_order(order_id)
    if order is None:
        raise NotFoundError("Order", order_id)
    return order


# PUBLIC_INTERFACE
@router.patch(
    "/{order_id}/items/{item_id}/measurements",
    response_model=MeasurementUpdateResult,
    summary="Update item measurements",
    description=(
        "Partial update: omitted fields are kept, null or empty clears a field. "
        "Non-numeric values reject the request."
    ),
)
async def update_item_measurements(
    payload: MeasurementPatch,
    order_id: UUID = Path(..., description="Order id"),
    item_id: UUID = Path(..., description="Order item id"),
    repository: TrackingRepository = Depends(get_repository),
    actor: Actor = Depends(get_current_actor),
) -> MeasurementUpdateResult:
    service = MeasurementService(repository)
    return await service.update_item_measurements(
        item_id, payload.model_dump(exclude_unset=True), actor, order_id=order_id
    )


# PUBLIC_INTERFACE
@router.patch(
    "/{order_id}/measurements/bulk",
    response_model=BulkMeasurementResult,
    summary="Bulk update measurements",
    description=(
        "Update several items of one order in a single all-or-nothing unit. With keepStoredOnInvalid, "
        "invalid values are skipped and the stored values kept."
    ),
)
async def bulk_update_measurements(
    payload: BulkMeasurementRequest,
    order_id: UUID = Path(..., description="Order id"),
    repository: TrackingRepository = Depends(get_repository),
    actor: Actor = Depends(get_current_actor),
) -> BulkMeasurementResult:
    service = MeasurementService(repository)
    return await service.update_order_measurements(
        order_id,
        [entry.model_dump(exclude_unset=True) for entry in payload.items],
        actor,
        measurement_unit=payload.measurement_unit,
        weight_unit=payload.weight_unit,
        keep_stored_on_invalid=payload.keep_stored_on_invalid,
    )
