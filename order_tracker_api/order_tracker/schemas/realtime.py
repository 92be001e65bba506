from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from order_tracker.core.stages import Stage
from order_tracker.schemas.common import CamelModel


class WsEnvelope(BaseModel):
    """Envelope for WebSocket messages."""
    type: str = Field(..., description="Message type (e.g., 'item.stage_changed').")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Message payload.")
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Timestamp (UTC).")
    channel: Optional[str] = Field(default=None, description="Optional sub-channel.")


class StageChangedEvent(CamelModel):
    """Kiosk notification for a committed item stage change."""
    order_id: UUID = Field(..., description="Order id")
    item_id: UUID = Field(..., description="Item id")
    product_code: str = Field(..., description="Item product code")
    from_stage: Stage = Field(..., description="Stage before the change")
    to_stage: Stage = Field(..., description="Stage after the change")
    order_stage: Optional[Stage] = Field(None, description="Aggregate order stage after the change")
    regression: bool = Field(False, description="True when the item moved back")
    performed_by: Optional[str] = Field(None, description="Display name of the actor")
