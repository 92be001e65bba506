from __future__ import annotations

from typing import Any, Dict, Optional

from jose import JWTError, jwt

from order_tracker.core.settings import get_app_settings
from order_tracker.schemas.tracking import Actor


# PUBLIC_INTERFACE
def decode_token(token: str) -> Dict[str, Any]:
    """Decode and validate a JWT; raises JWTError if invalid/expired."""
    settings = get_app_settings()
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


# PUBLIC_INTERFACE
def actor_from_claims(claims: Dict[str, Any]) -> Optional[Actor]:
    """
    Build the acting user from token claims.

    'sub' is required; the display name falls back from 'name' to 'email' to the
    subject itself. Returns None when the subject is missing.
    """
    subject = claims.get("sub")
    if not subject:
        return None
    display_name = claims.get("name") or claims.get("email") or str(subject)
    roles = claims.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    return Actor(id=str(subject), display_name=str(display_name), roles=[str(r) for r in roles])


# PUBLIC_INTERFACE
def get_token_actor(token: str) -> Optional[Actor]:
    """Return the Actor for a token or None when the token is invalid."""
    try:
        payload = decode_token(token)
    except JWTError:
        return None
    return actor_from_claims(payload)
