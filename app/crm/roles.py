"""
Effective role resolution.

Roles are hierarchical: each higher role includes every capability of the
roles below it.

    USER < MANAGER < ADMIN

The role is derived from a Principal on every read and never stored on its
own. Resolution is a two-step algorithm:

1. Server-issued role claims, checked ADMIN, MANAGER, USER in that order.
   A claim matches in bare form ("ADMIN") or prefixed form ("ROLE_ADMIN").
2. Only when no claims are present: a case-insensitive exact match of the
   username against "admin", "manager" and "user". This keeps the UI working
   against backends that do not return claims.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from app.crm.session import Principal

logger = logging.getLogger(__name__)

ROLE_PREFIX = "ROLE_"


class EffectiveRole(str, Enum):
    USER = "USER"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"

    @property
    def rank(self) -> int:
        return _RANK[self]

    @property
    def claim(self) -> str:
        """Prefixed form used by the backend's role administration endpoint."""
        return f"{ROLE_PREFIX}{self.value}"

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, EffectiveRole):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, EffectiveRole):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, EffectiveRole):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, EffectiveRole):
            return NotImplemented
        return self.rank >= other.rank


_RANK = {EffectiveRole.USER: 1, EffectiveRole.MANAGER: 2, EffectiveRole.ADMIN: 3}

# Highest first.
_CLAIM_ORDER = (EffectiveRole.ADMIN, EffectiveRole.MANAGER, EffectiveRole.USER)

_USERNAME_ROLES = {
    "admin": EffectiveRole.ADMIN,
    "manager": EffectiveRole.MANAGER,
    "user": EffectiveRole.USER,
}


def role_from_claims(claims) -> EffectiveRole | None:
    if not claims:
        return None
    claims = {claims} if isinstance(claims, str) else set(claims)
    for role in _CLAIM_ORDER:
        if role.value in claims or role.claim in claims:
            return role
    return None


def role_from_username(username: str | None) -> EffectiveRole | None:
    if not username:
        return None
    return _USERNAME_ROLES.get(username.lower())


def resolve_role(principal: "Principal | None") -> EffectiveRole | None:
    """Derive the effective role; None means no capabilities."""
    if principal is None:
        return None

    heuristic = role_from_username(principal.username)
    role = role_from_claims(principal.role_claims)
    if role is None:
        # Claims absent, or none of them is a known role.
        return heuristic

    if heuristic is not None and heuristic != role:
        logger.warning(
            "Role claims and username disagree (username=%s claims=%s heuristic=%s); using claims",
            principal.username,
            role.value,
            heuristic.value,
        )
    return role


def parse_role(value: str | None) -> EffectiveRole | None:
    """Accept "ADMIN" or "ROLE_ADMIN" (any case) from form input."""
    raw = (value or "").strip().upper()
    if raw.startswith(ROLE_PREFIX):
        raw = raw[len(ROLE_PREFIX):]
    try:
        return EffectiveRole(raw)
    except ValueError:
        return None
