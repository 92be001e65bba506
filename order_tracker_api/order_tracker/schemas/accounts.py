from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import Field

from order_tracker.schemas.common import CamelModel


class BlockingOrder(CamelModel):
    """An order that prevents its account from being deleted."""
    id: UUID = Field(..., description="Order id")
    reference: str = Field(..., description="Order reference (PO number)")
    created_at: datetime = Field(..., description="Order creation time")


class DeletionCheck(CamelModel):
    """
    Whether an account may be deleted.

    When blocked, up to three blocking orders are listed newest first and the
    remainder is summarized by overflow_count.
    """
    ok: bool = Field(..., description="True when the account can be deleted")
    reason: Optional[str] = Field(None, description="Why deletion is blocked")
    blocking_orders: List[BlockingOrder] = Field(default_factory=list)
    overflow_count: int = Field(0, ge=0, description="Blocking orders not listed")
