"""
Measurement normalization and updates.

Measurements arrive untyped from forms and spreadsheets: numbers, numeric
strings, empty strings or nulls. Everything past this module is float or None.

Partial updates are three-state per field:
  - key absent (or UNSET): leave the stored value alone
  - None / "": clear the stored value
  - value: store normalize(value)
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence
from uuid import UUID

from order_tracker.core.errors import InvalidMeasurementError, NotFoundError
from order_tracker.repositories.interface import TrackingRepository
from order_tracker.schemas.orders import (
    BulkMeasurementResult,
    MeasurementUpdateResult,
    SkippedMeasurement,
)
from order_tracker.schemas.tracking import Actor, OrderItemRead
from order_tracker.services.audit import AuditAction, AuditLogger, EntityType
from order_tracker.services.base import BaseService, retry_on_conflict

logger = logging.getLogger(__name__)

MEASUREMENT_FIELDS = ("height", "width", "length", "weight")
UNIT_FIELDS = ("measurement_unit", "weight_unit")

_FIELD_ALIASES = {"measurementUnit": "measurement_unit", "weightUnit": "weight_unit"}


class _Unset:
    """Marker for a field the caller did not supply."""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


# PUBLIC_INTERFACE
def normalize(raw: Any) -> Optional[float]:
    """
    Coerce one raw measurement to float or None.

    None, UNSET, "" and whitespace-only strings map to None. Numbers and numeric
    strings parse to float.

    Raises:
        InvalidMeasurementError: booleans, non-numeric strings, non-finite values
        and any other type.
    """
    if raw is None or raw is UNSET:
        return None
    if isinstance(raw, bool):
        raise InvalidMeasurementError("Measurement must be numeric, got a boolean", value=raw)
    if isinstance(raw, (int, float, Decimal)):
        value = float(raw)
    elif isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        try:
            value = float(text)
        except ValueError:
            raise InvalidMeasurementError(f"Measurement {raw!r} is not a number", value=raw) from None
    else:
        raise InvalidMeasurementError(f"Unsupported measurement type {type(raw).__name__}", value=raw)
    if not math.isfinite(value):
        raise InvalidMeasurementError(f"Measurement {raw!r} is not a finite number", value=raw)
    return value


def _normalize_unit(raw: Any) -> Optional[str]:
    if raw is None or raw is UNSET:
        return None
    if not isinstance(raw, str):
        raise InvalidMeasurementError("Unit must be a string", value=raw)
    return raw.strip() or None


# PUBLIC_INTERFACE
def prepare_measurement_update(
    partial: Mapping[str, Any],
    skipped: Optional[List[SkippedMeasurement]] = None,
) -> Dict[str, Any]:
    """
    Turn a caller-supplied partial into the fields to write.

    A key appears in the result only when the caller supplied it. When `skipped`
    is given, invalid fields are dropped and appended to it instead of raising.

    Raises:
        InvalidMeasurementError: an invalid field, carrying the field name.
    """
    prepared: Dict[str, Any] = {}
    for key, raw in partial.items():
        field = _FIELD_ALIASES.get(key, key)
        if raw is UNSET or (field not in MEASUREMENT_FIELDS and field not in UNIT_FIELDS):
            continue
        try:
            prepared[field] = normalize(raw) if field in MEASUREMENT_FIELDS else _normalize_unit(raw)
        except InvalidMeasurementError as exc:
            if skipped is None:
                raise InvalidMeasurementError(f"Invalid {field}: {exc.message}", field=field, value=raw) from exc
            skipped.append(SkippedMeasurement(field=field, value=None if raw is None else str(raw), message=exc.message))
    return prepared


def _unit_for(field: str, fields: Mapping[str, Any], item: OrderItemRead) -> Optional[str]:
    unit_field = "weight_unit" if field == "weight" else "measurement_unit"
    return fields.get(unit_field) or getattr(item, unit_field)


class MeasurementService(BaseService):
    """
    Applies measurement updates to order items.

    Whether invalid input rejects the whole request or keeps the stored value is
    chosen per call with `keep_stored_on_invalid`.
    """

    def __init__(self, repository: TrackingRepository) -> None:
        super().__init__(repository)
        self.audit = AuditLogger(repository)

    async def _apply(
        self,
        item: OrderItemRead,
        fields: Dict[str, Any],
        actor: Actor,
        skipped: List[SkippedMeasurement],
    ) -> MeasurementUpdateResult:
        if not fields:
            return MeasurementUpdateResult(item=item, applied={}, skipped=skipped)

        changes = []
        for field in MEASUREMENT_FIELDS:
            if field in fields and fields[field] != getattr(item, field):
                changes.append(
                    {
                        "field": field,
                        "oldValue": getattr(item, field),
                        "newValue": fields[field],
                        "unit": _unit_for(field, fields, item),
                    }
                )
        for field in UNIT_FIELDS:
            if field in fields and fields[field] != getattr(item, field):
                changes.append({"field": field, "oldValue": getattr(item, field), "newValue": fields[field], "unit": None})

        values = dict(fields)
        values["measured_at"] = datetime.now(timezone.utc)
        values["measured_by"] = actor.display_name
        updated = await self.repository.update_item(item.id, values)

        entry = None
        if changes:
            entry = await self.audit.record(
                EntityType.ORDER_ITEM,
                item.id,
                AuditAction.MEASUREMENTS_UPDATED,
                {"orderId": str(item.order_id), "changes": changes},
                actor,
            )
        return MeasurementUpdateResult(item=updated, applied=fields, skipped=skipped, audit_entry=entry)

    # PUBLIC_INTERFACE
    async def update_item_measurements(
        self,
        item_id: UUID,
        partial: Mapping[str, Any],
        actor: Actor,
        order_id: Optional[UUID] = None,
        keep_stored_on_invalid: bool = False,
    ) -> MeasurementUpdateResult:
        """
        Update one item's measurements.

        Input is validated before anything is read. When `order_id` is given the
        item must belong to that order.

        Raises:
            InvalidMeasurementError: invalid input and keep_stored_on_invalid is False.
            NotFoundError: unknown item, or item of another order.
        """
        skipped: List[SkippedMeasurement] = []
        fields = prepare_measurement_update(partial, skipped if keep_stored_on_invalid else None)

        async def _run() -> MeasurementUpdateResult:
            async with self.repository.atomic(f"item:{item_id}"):
                item = await self.repository.get_item(item_id)
                if item is None or (order_id is not None and item.order_id != order_id):
                    raise NotFoundError("OrderItem", item_id)
                return await self._apply(item, fields, actor, list(skipped))

        result = await retry_on_conflict(_run, description="measurement update")
        if skipped:
            logger.warning("Kept stored values for invalid measurements on item %s: %s", item_id, [s.field for s in skipped])
        return result

    # PUBLIC_INTERFACE
    async def update_order_measurements(
        self,
        order_id: UUID,
        entries: Sequence[Mapping[str, Any]],
        actor: Actor,
        measurement_unit: Optional[str] = None,
        weight_unit: Optional[str] = None,
        keep_stored_on_invalid: bool = False,
    ) -> BulkMeasurementResult:
        """
        Update measurements of several items of one order, all or nothing.

        Each entry carries the item `id` plus a partial. The order-level units
        apply to entries that do not name their own.

        Raises:
            InvalidMeasurementError: invalid input and keep_stored_on_invalid is False.
            NotFoundError: unknown order, or an item that does not belong to it.
        """
        prepared = []
        for entry in entries:
            raw_id = entry.get("id")
            try:
                item_id = raw_id if isinstance(raw_id, UUID) else UUID(str(raw_id))
            except ValueError:
                raise NotFoundError("OrderItem", raw_id) from None
            partial = {k: v for k, v in entry.items() if k != "id"}
            if measurement_unit is not None:
                partial.setdefault("measurement_unit", measurement_unit)
            if weight_unit is not None:
                partial.setdefault("weight_unit", weight_unit)
            skipped: List[SkippedMeasurement] = []
            fields = prepare_measurement_update(partial, skipped if keep_stored_on_invalid else None)
            prepared.append((item_id, fields, skipped))

        if not prepared:
            return BulkMeasurementResult(updated=0, items=[])

        keys = [f"order:{order_id}"] + [f"item:{item_id}" for item_id, _, _ in prepared]

        async def _run() -> BulkMeasurementResult:
            async with self.repository.atomic(*keys):
                order = await self.repository.get_order(order_id)
                if order is None:
                    raise NotFoundError("Order", order_id)
                items = {item.id: item for item in await self.repository.list_items_for_order(order_id)}
                for item_id, _, _ in prepared:
                    if item_id not in items:
                        raise NotFoundError("OrderItem", item_id)
                results = []
                for item_id, fields, skipped in prepared:
                    result = await self._apply(items[item_id], fields, actor, list(skipped))
                    items[item_id] = result.item
                    results.append(result)
            return BulkMeasurementResult(updated=sum(1 for r in results if r.applied), items=results)

        result = await retry_on_conflict(_run, description="bulk measurement update")
        logger.info("Bulk measurement update on order %s: %d item(s) written", order_id, result.updated)
        return result
