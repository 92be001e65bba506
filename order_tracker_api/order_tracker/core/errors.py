"""
Domain error taxonomy.

Every error carries a stable machine-readable `kind`, a human-readable message
and an HTTP status used by the API exception handler. Services raise these;
routes never translate them by hand.
"""

from __future__ import annotations

from typing import Any, Optional


class OrderTrackerError(Exception):
    """Base class for domain errors surfaced to API callers."""

    kind = "order_tracker_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "details": self.details}


class InvalidStageError(OrderTrackerError):
    """Target stage is not a member of the stage domain."""

    kind = "invalid_stage"
    status_code = 422


class InvalidMeasurementError(OrderTrackerError):
    """A measurement value is non-empty and not numeric."""

    kind = "invalid_measurement"
    status_code = 422

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None) -> None:
        super().__init__(message, details={"field": field, "value": None if value is None else str(value)})
        self.field = field
        self.value = value


class ReferentialConstraintError(OrderTrackerError):
    """A destructive operation is blocked by dependent rows."""

    kind = "referential_constraint"
    status_code = 409


class ConcurrencyConflictError(OrderTrackerError):
    """The atomic unit could not be acquired or was aborted by the store."""

    kind = "concurrency_conflict"
    status_code = 409


class NotFoundError(OrderTrackerError):
    """An entity id did not resolve."""

    kind = "not_found"
    status_code = 404

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            f"{entity_type} {entity_id} not found",
            details={"entity_type": entity_type, "entity_id": str(entity_id)},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class InvalidDateRangeError(OrderTrackerError):
    """Report date range has date_from after date_to."""

    kind = "invalid_date_range"
    status_code = 422
