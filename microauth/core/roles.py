"""
RBAC (Role-Based Access Control) module.

Follows Layer 2 rules:
- Roles are: owner, admin, member (lowercase); memberships may carry other
  free-form roles, which rank below member
- All endpoints that change data MUST enforce role checks
- RBAC logic MUST live in this dedicated module, not scattered
- Clear rules:
  - Tenant resource read/create -> min role member
  - Tenant resource delete, member management -> min role admin
- Never trust role or tenant information from the client; always from JWT claims
  or the membership store
"""
from __future__ import annotations
from typing import Callable, Optional
from fastapi import Depends
from microauth.core.auth import Authed, tenant_required
from microauth.core.errors import AuthorizationError

# Role hierarchy (lower number = higher privilege)
ROLE_HIERARCHY = {
    "owner": 0,
    "admin": 1,
    "member": 2,
}

# Roles a member can be granted through "add member"; ownership only comes from tenant creation
ASSIGNABLE_ROLES = ("admin", "member")


def role_at_least(role: Optional[str], min_role: str) -> bool:
    """True when `role` ranks at or above `min_role`. Unknown roles = lowest privilege."""
    if not role:
        return False
    return ROLE_HIERARCHY.get(role, 999) <= ROLE_HIERARCHY[min_role]


def require_min_role(min_role: str) -> Callable:
    """
    Guard that ensures the caller's role meets minimum privilege level.

    Role hierarchy: owner > admin > member

    Args:
        min_role: Minimum required role (e.g., "admin" allows admin and owner)

    Returns:
        Dependency function that validates minimum role; implies tenant_required

    Example:
        @router.delete("/products/{product_id}")
        def delete(auth: Authed = Depends(require_min_role("admin"))):
            ...
    """
    if min_role not in ROLE_HIERARCHY:
        raise ValueError(f"Invalid role: {min_role}. Must be one of {list(ROLE_HIERARCHY.keys())}")

    def _inner(auth: Authed = Depends(tenant_required)) -> Authed:
        if not role_at_least(auth.role, min_role):
            raise AuthorizationError(
                meta={
                    "required_min_role": min_role,
                    "current_role": auth.role,
                    "tenant_id": auth.tenant_id,
                },
            )
        return auth
    return _inner
