from __future__ import annotations

import os

# Settings are read at import time by the app module.
os.environ.setdefault("RUN_MIGRATIONS_ON_STARTUP", "false")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("TRANSITION_RETRY_BACKOFF_SECONDS", "0")

import pytest  # noqa: E402
from jose import jwt  # noqa: E402

from order_tracker.schemas.tracking import Actor  # noqa: E402

from fakes import InMemoryTrackingRepository  # noqa: E402


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def repo() -> InMemoryTrackingRepository:
    return InMemoryTrackingRepository()


@pytest.fixture
def actor() -> Actor:
    return Actor(id="user-1", display_name="Dana Operator", roles=["operator"])


def make_token(sub: str = "user-1", name: str = "Dana Operator", roles=("operator",)) -> str:
    claims = {"sub": sub, "name": name, "roles": list(roles)}
    return jwt.encode(claims, os.environ["JWT_SECRET_KEY"], algorithm="HS256")
