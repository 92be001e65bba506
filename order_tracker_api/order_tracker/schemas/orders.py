from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import Field

from order_tracker.core.stages import Stage
from order_tracker.schemas.common import CamelModel
from order_tracker.schemas.tracking import AuditLogEntryRead, OrderItemRead, StatusEventRead

# Raw measurement input, passed through untouched so normalize() sees exactly
# what the client sent (pydantic would coerce true to 1.0).
MeasurementInput = Any


class StageChangeRequest(CamelModel):
    """Request to move an item to another stage."""
    target_stage: str = Field(..., description="Target stage name, e.g. QUALITY_CHECK or 'quality check'")
    note: Optional[str] = Field(None, description="Optional note stored on the status event")


class TransitionResult(CamelModel):
    """Outcome of a stage transition."""
    item: OrderItemRead = Field(..., description="Item after the transition")
    event: Optional[StatusEventRead] = Field(None, description="Status event written, None for a no-op")
    direction: str = Field(..., description="forward | regression | unchanged")
    order_stage: Optional[Stage] = Field(None, description="Aggregate stage of the order after the transition")


class Regression(CamelModel):
    """A rank-decreasing step in an item's stage history."""
    from_stage: Stage = Field(..., description="Stage before the regression")
    to_stage: Stage = Field(..., description="Stage moved back to")
    note: Optional[str] = Field(None, description="Note of the regressing status event")
    at: datetime = Field(..., description="Timestamp of the regressing status event")


class MeasurementPatch(CamelModel):
    """
    Partial measurement update.

    Omitted fields are left untouched, explicit nulls clear the stored value.
    Routes dump this with exclude_unset=True to keep that distinction.
    """
    height: MeasurementInput = None
    width: MeasurementInput = None
    length: MeasurementInput = None
    weight: MeasurementInput = None
    measurement_unit: Optional[str] = None
    weight_unit: Optional[str] = None


class BulkMeasurementItem(MeasurementPatch):
    """One entry of a bulk measurement update."""
    id: UUID = Field(..., description="Order item id")


class BulkMeasurementRequest(CamelModel):
    """Bulk measurement update for several items of one order."""
    items: List[BulkMeasurementItem] = Field(..., min_length=1)
    measurement_unit: Optional[str] = Field(None, description="Length unit applied to entries that omit one")
    weight_unit: Optional[str] = Field(None, description="Weight unit applied to entries that omit one")
    keep_stored_on_invalid: bool = Field(
        False, description="Drop invalid values and keep the stored ones instead of rejecting the request"
    )


class SkippedMeasurement(CamelModel):
    """A field dropped by the keep-stored-on-invalid policy."""
    field: str
    value: Optional[str] = None
    message: str


class MeasurementUpdateResult(CamelModel):
    """Result of a measurement update on one item."""
    item: OrderItemRead
    applied: Dict[str, Any] = Field(default_factory=dict, description="Fields that were written")
    skipped: List[SkippedMeasurement] = Field(default_factory=list)
    audit_entry: Optional[AuditLogEntryRead] = None


class BulkMeasurementResult(CamelModel):
    """Result of a bulk measurement update."""
    updated: int = Field(..., description="Number of items written")
    items: List[MeasurementUpdateResult] = Field(default_factory=list)
