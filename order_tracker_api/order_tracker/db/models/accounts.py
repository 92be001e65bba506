from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional
from sqlalchemy import Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from order_tracker.db.base import Base, UUIDPkMixin, TimestampMixin

if TYPE_CHECKING:
    from order_tracker.db.models.orders import Order


class Account(UUIDPkMixin, TimestampMixin, Base):
    """Customer account owning zero or more orders."""
    __tablename__ = "accounts"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    contact_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    email: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    orders: Mapped[List["Order"]] = relationship("Order", back_populates="account", passive_deletes="all")
