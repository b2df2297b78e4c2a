"""Caller identity for API handlers.

Tokens have already been validated by the gateway in front of this service,
so the payload is only decoded here, never verified.
"""

from __future__ import annotations

from typing import Callable, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .exceptions import AuthenticationError, PermissionDeniedError
from .identity import Actor, Role
from .logging_config import bind_request_context

bearer_scheme = HTTPBearer(auto_error=False)

MANAGE_ROLES = frozenset({Role.ADMIN, Role.INVENTORY_MANAGER})
ADJUST_ROLES = MANAGE_ROLES | {Role.WAREHOUSE_STAFF}
RESERVATION_ROLES = MANAGE_ROLES | {Role.ORDER_SERVICE}


def decode_actor(token: str) -> Actor:
    """Build an :class:`Actor` from the claims of a gateway-validated JWT."""

    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError as exc:
        raise AuthenticationError("Invalid token format") from exc
    return Actor.from_claims(claims)


def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Actor:
    """Require a bearer token and return its caller."""

    if credentials is None:
        raise AuthenticationError("No token provided")
    actor = decode_actor(credentials.credentials)
    bind_request_context(actor=actor.identifier)
    return actor


def require_roles(allowed: frozenset[Role]) -> Callable[[Actor], Actor]:
    """Dependency factory admitting callers holding at least one of *allowed*."""

    def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not actor.has_any_role(allowed):
            raise PermissionDeniedError("Insufficient permissions")
        return actor

    return dependency
