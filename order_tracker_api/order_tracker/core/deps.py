from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from order_tracker.core.logging import actor_id_var
from order_tracker.core.security import actor_from_claims, decode_token
from order_tracker.db.session import get_async_session
from order_tracker.repositories.interface import TrackingRepository
from order_tracker.repositories.tracking import SqlAlchemyTrackingRepository
from order_tracker.schemas.tracking import Actor

logger = logging.getLogger(__name__)

# Tokens are issued by the auth service; the URL only feeds the docs UI.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


# PUBLIC_INTERFACE
async def get_repository(session: AsyncSession = Depends(get_async_session)) -> TrackingRepository:
    """Repository used by the lifecycle services; overridden with a fake in tests."""
    return SqlAlchemyTrackingRepository(session)


# PUBLIC_INTERFACE
async def get_current_actor(token: str = Depends(oauth2_scheme)) -> Actor:
    """
    Resolve the acting user from the Authorization bearer token.

    Raises:
        HTTPException: 401 when the token is invalid or has no subject.
    """
    try:
        claims = decode_token(token)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    actor = actor_from_claims(claims)
    if actor is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    actor_id_var.set(actor.id)
    return actor


# PUBLIC_INTERFACE
def require_roles(*required: str):
    """
    Create a dependency that requires the current actor to hold one of the
    specified roles (from the token's roles claim).
    """

    async def _dep(actor: Actor = Depends(get_current_actor)) -> Actor:
        if set(actor.roles).isdisjoint(set(required)):
            logger.info("Actor %s lacks roles %s", actor.id, required)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return actor

    return _dep
