from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from order_tracker.core.stages import Stage
from order_tracker.schemas.common import CamelModel


class Actor(BaseModel):
    """The acting user, resolved from the bearer token by the auth layer."""
    id: str = Field(..., description="User id (token subject)")
    display_name: str = Field(..., description="Name recorded in the audit trail")
    roles: List[str] = Field(default_factory=list)


class AccountRead(CamelModel):
    """Customer account read model."""
    id: UUID = Field(..., description="Account id")
    name: str = Field(..., description="Account name")
    contact_name: Optional[str] = Field(None)
    email: Optional[str] = Field(None)
    phone: Optional[str] = Field(None)
    created_at: datetime = Field(..., description="Created at")
    updated_at: datetime = Field(..., description="Updated at")


class OrderItemRead(CamelModel):
    """Order item read model, including measurements and soft-delete marker."""
    id: UUID = Field(..., description="Item id")
    order_id: UUID = Field(..., description="Owning order id")
    product_code: str = Field(..., description="Product code")
    qty: int = Field(1)
    current_stage: Stage = Field(..., description="Per-item production stage")
    height: Optional[float] = Field(None)
    width: Optional[float] = Field(None)
    length: Optional[float] = Field(None)
    weight: Optional[float] = Field(None)
    measurement_unit: Optional[str] = Field(None)
    weight_unit: Optional[str] = Field(None)
    measured_at: Optional[datetime] = Field(None)
    measured_by: Optional[str] = Field(None)
    item_price: Optional[float] = Field(None)
    archived_at: Optional[datetime] = Field(None)
    created_at: datetime = Field(..., description="Created at")
    updated_at: datetime = Field(..., description="Updated at")

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None


class OrderRead(CamelModel):
    """Order header with its items."""
    id: UUID = Field(..., description="Order id")
    po_number: str = Field(..., description="Purchase order number")
    account_id: UUID = Field(..., description="Owning account id")
    current_stage: Stage = Field(..., description="Aggregate stage (least-progressed active item)")
    rep_id: Optional[str] = Field(None, description="Assigned sales rep id")
    rep_name: Optional[str] = Field(None, description="Assigned sales rep name")
    eta_date: Optional[datetime] = Field(None, description="Promised delivery date")
    created_at: datetime = Field(..., description="Created at")
    updated_at: datetime = Field(..., description="Updated at")
    items: List[OrderItemRead] = Field(default_factory=list)


class StatusEventRead(CamelModel):
    """Immutable stage history entry."""
    id: UUID = Field(..., description="Event id")
    order_id: UUID = Field(..., description="Order id")
    item_id: Optional[UUID] = Field(None, description="Item id")
    stage: Stage = Field(..., description="Stage reached")
    note: Optional[str] = Field(None)
    created_at: datetime = Field(..., description="Event timestamp")

    class Config:
        frozen = True


class AuditLogEntryRead(CamelModel):
    """Immutable audit trail entry."""
    id: UUID = Field(..., description="Entry id")
    entity_type: str = Field(..., description="Entity type, e.g. OrderItem")
    entity_id: str = Field(..., description="Entity id")
    action: str = Field(..., description="Action code, e.g. ITEM_STAGE_CHANGED")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Structured payload")
    performed_by_id: Optional[str] = Field(None)
    performed_by_name: Optional[str] = Field(None)
    created_at: datetime = Field(..., description="Entry timestamp")

    class Config:
        frozen = True


class OrderFilter(BaseModel):
    """
    Selection used by repository order listings and reports.

    Order-level criteria (dates apply to created_at, inclusive) select orders;
    item-level criteria (archived, product codes) trim each order's items.
    """
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    account_id: Optional[UUID] = None
    rep_id: Optional[str] = None
    stages: List[Stage] = Field(default_factory=list)
    product_codes: List[str] = Field(default_factory=list)
    include_archived: bool = False

    def matches_order(self, order: OrderRead) -> bool:
        if self.date_from is not None and order.created_at < self.date_from:
            return False
        if self.date_to is not None and order.created_at > self.date_to:
            return False
        if self.account_id is not None and order.account_id != self.account_id:
            return False
        if self.rep_id is not None and order.rep_id != self.rep_id:
            return False
        if self.stages and order.current_stage not in self.stages:
            return False
        return True

    def select_items(self, items: List[OrderItemRead]) -> List[OrderItemRead]:
        selected = []
        for item in items:
            if not self.include_archived and item.archived_at is not None:
                continue
            if self.product_codes and item.product_code not in self.product_codes:
                continue
            selected.append(item)
        return selected
