"""
ORM models for accounts, orders, order items, stage history and the audit trail.

Importing this package ensures model classes are registered with the Base
metadata for Alembic and runtime usage.
"""

from .accounts import Account  # noqa: F401
from .orders import (  # noqa: F401
    Order,
    OrderItem,
    StatusEvent,
)
from .audit import AuditLogEntry  # noqa: F401
