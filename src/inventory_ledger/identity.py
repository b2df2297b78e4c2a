"""Caller identity passed explicitly into every stock operation."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

import structlog

logger = structlog.get_logger(__name__)


class Role(str, enum.Enum):
    ADMIN = "admin"
    INVENTORY_MANAGER = "inventory_manager"
    WAREHOUSE_STAFF = "warehouse_staff"
    ORDER_SERVICE = "order_service"


# Claim values are matched exactly (after case folding) against this table.
# A claim such as "administrator" maps to nothing.
ROLE_LOOKUP: Mapping[str, Role] = {
    "admin": Role.ADMIN,
    "inventory_manager": Role.INVENTORY_MANAGER,
    "warehouse_staff": Role.WAREHOUSE_STAFF,
    "order_service": Role.ORDER_SERVICE,
}


def resolve_roles(claimed: Iterable[str]) -> frozenset[Role]:
    roles: set[Role] = set()
    for name in claimed:
        if not isinstance(name, str):
            continue
        role = ROLE_LOOKUP.get(name.strip().casefold())
        if role is None:
            logger.debug("unknown_role_claim_ignored", claim=name)
            continue
        roles.add(role)
    return frozenset(roles)


@dataclass(frozen=True, slots=True)
class Actor:
    """Trusted claims of the caller, as forwarded by the gateway."""

    subject: str | None = None
    email: str | None = None
    username: str | None = None
    full_name: str | None = None
    roles: frozenset[Role] = field(default_factory=frozenset)
    scope: str | None = None

    @property
    def identifier(self) -> str:
        """Identifier written to the ledger: email, else subject."""

        return self.email or self.subject or "anonymous"

    def has_any_role(self, allowed: Iterable[Role]) -> bool:
        return not self.roles.isdisjoint(allowed)

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> "Actor":
        email = claims.get("email")
        username = claims.get("username") or claims.get("preferred_username")
        if not username and isinstance(email, str):
            username = email.split("@", 1)[0]
        full_name = claims.get("name") or " ".join(
            part for part in (claims.get("given_name"), claims.get("family_name")) if part
        )
        raw_roles = claims.get("groups") or claims.get("roles") or []
        if isinstance(raw_roles, str):
            raw_roles = [raw_roles]
        return cls(
            subject=claims.get("sub"),
            email=email,
            username=username,
            full_name=full_name or None,
            roles=resolve_roles(raw_roles),
            scope=claims.get("scope"),
        )


SYSTEM_ACTOR = Actor(subject="system", roles=frozenset({Role.ADMIN}))
