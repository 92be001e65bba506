from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, List, Optional
from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from order_tracker.core.stages import INITIAL_STAGE
from order_tracker.db.base import Base, CreatedAtMixin, UUIDPkMixin, TimestampMixin

if TYPE_CHECKING:
    from order_tracker.db.models.accounts import Account


class Order(UUIDPkMixin, TimestampMixin, Base):
    """Customer order header; current_stage is derived from its items."""
    __tablename__ = "orders"

    po_number: Mapped[str] = mapped_column(Text, nullable=False)
    account_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    current_stage: Mapped[str] = mapped_column(Text, nullable=False, default=INITIAL_STAGE.value)
    rep_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    rep_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    eta_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    account: Mapped["Account"] = relationship("Account", back_populates="orders")
    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.created_at",
        lazy="selectin",
    )


class OrderItem(UUIDPkMixin, TimestampMixin, Base):
    """Line item with its own production stage and measurements."""
    __tablename__ = "order_items"

    order_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_code: Mapped[str] = mapped_column(Text, nullable=False)
    qty: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    current_stage: Mapped[str] = mapped_column(Text, nullable=False, default=INITIAL_STAGE.value)
    height: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    width: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    length: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    weight: Mapped[Optional[float]] = mapped_column(Numeric(18, 6, asdecimal=False), nullable=True)
    measurement_unit: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    weight_unit: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    measured_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    measured_by: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    item_price: Mapped[Optional[float]] = mapped_column(Numeric(18, 2, asdecimal=False), nullable=True)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    order: Mapped["Order"] = relationship("Order", back_populates="items")


class StatusEvent(UUIDPkMixin, CreatedAtMixin, Base):
    """Append-only stage history; one row per stage change of an item."""
    __tablename__ = "status_events"
    __table_args__ = (
        Index("ix_status_events_item_created", "item_id", "created_at"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    item_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("order_items.id", ondelete="CASCADE"), nullable=True
    )
    stage: Mapped[str] = mapped_column(Text, nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
