from __future__ import annotations

from typing import Optional
from sqlalchemy import Index, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from order_tracker.db.base import Base, CreatedAtMixin, UUIDPkMixin


class AuditLogEntry(UUIDPkMixin, CreatedAtMixin, Base):
    """Append-only audit trail; rows are never updated or deleted."""
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_entity", "entity_type", "entity_id", "created_at"),
    )

    entity_type: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[str] = mapped_column(Text, nullable=False)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    payload: Mapped[dict] = mapped_column("metadata", JSONB, nullable=False, default=dict)
    performed_by_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    performed_by_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
