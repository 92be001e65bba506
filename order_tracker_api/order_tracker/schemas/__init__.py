"""
Public Pydantic schemas used by FastAPI routes, services, and tests.

Schemas are grouped by domain module (tracking read models, orders, accounts,
reports, realtime) plus common reusable models such as the error envelope.
"""

from .common import MessageResponse  # noqa: F401
