"""
Authenticated caller identity.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Principal:
    user_id: str
    roles: frozenset[str] = field(default_factory=frozenset)

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_role(self, roles: set[str] | frozenset[str]) -> bool:
        return bool(self.roles & set(roles))


def principal_from_claims(claims: dict[str, Any]) -> Principal | None:
    """
    Build a Principal from verified token claims.

    The user id comes from `sub` (or `_id` for tokens minted by the legacy
    account service); roles from `roles` (list) and/or `role` (string).
    """
    user_id = claims.get("sub") or claims.get("_id")
    if not user_id:
        return None

    roles: set[str] = set()
    role = claims.get("role")
    if isinstance(role, str) and role:
        roles.add(role)
    extra = claims.get("roles")
    if isinstance(extra, list | tuple):
        roles.update(str(r) for r in extra if r)
    return Principal(user_id=str(user_id), roles=frozenset(roles))
