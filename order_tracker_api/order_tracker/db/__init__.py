"""
Persistence layer: declarative base, database settings, the async engine and
the ORM models of accounts, orders, items, status events and audit entries.
"""

from . import models as models  # noqa: F401  registers tables on Base.metadata
from .base import Base
from .config import Settings, get_settings
from .session import dispose_engine, get_async_session

__all__ = ["Base", "Settings", "get_settings", "get_async_session", "dispose_engine", "models"]
