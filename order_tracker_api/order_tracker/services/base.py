from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from order_tracker.core.errors import ConcurrencyConflictError
from order_tracker.core.settings import get_app_settings
from order_tracker.repositories.interface import TrackingRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BaseService:
    """
    Base class for services. Holds the repository shared by the service's operations.

    Services should keep business logic and orchestration, delegating data access
    to the repository.
    """

    def __init__(self, repository: TrackingRepository) -> None:
        self.repository = repository


# PUBLIC_INTERFACE
async def retry_on_conflict(
    operation: Callable[[], Awaitable[T]],
    backoff_seconds: Optional[float] = None,
    description: str = "operation",
) -> T:
    """
    Run `operation`, retrying it once after a short backoff when the atomic unit
    reports a ConcurrencyConflictError. A second conflict propagates.
    """
    if backoff_seconds is None:
        backoff_seconds = get_app_settings().TRANSITION_RETRY_BACKOFF_SECONDS
    try:
        return await operation()
    except ConcurrencyConflictError:
        logger.warning("Concurrency conflict during %s; retrying once in %.3fs", description, backoff_seconds)
        await asyncio.sleep(backoff_seconds)
        return await operation()
