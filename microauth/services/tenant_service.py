"""
Tenant context resolution and tenant/membership management.

Follows Layer 2 and Layer 4 rules:
- A token is only ever bound to a tenant the identity has an active membership in
- A requested tenant is never silently replaced by another one (or by none)
- Multi-row writes (tenant + owner membership, clear + set default, remove + reassign)
  run in one transaction
- Uniqueness is guarded by the store; IntegrityError becomes 409
- Logs security events for every membership change
"""
from __future__ import annotations
from typing import Optional
from sqlalchemy.orm import Session
from microauth.core.db import atomic
from microauth.core.errors import (
    AccessDeniedError, AuthorizationError, ConflictError, NotFoundError, ValidationError,
)
from microauth.core.logger import log_security_event
from microauth.core.roles import ASSIGNABLE_ROLES, role_at_least
from microauth.domain.models import TenantContext
from microauth.domain.sqlalchemy_models import Tenant, UserTenant
from microauth.repositories import tenant_repository, user_repo


def _context(membership: UserTenant, tenant: Tenant) -> TenantContext:
    return TenantContext(tenant_id=tenant.id, tenant_name=tenant.name, role=membership.role)


def resolve(db: Session, user_id: int, requested_tenant_id: Optional[int] = None) -> Optional[TenantContext]:
    """
    Decide which tenant (if any) a token issued to user_id carries.

    Args:
        db: Database session
        user_id: Identity the token is issued to
        requested_tenant_id: Explicit tenant, or None to use the user's default

    Returns:
        TenantContext, or None when nothing was requested and the user has no default

    Raises:
        AccessDeniedError: requested tenant has no active membership (or is inactive)
    """
    if requested_tenant_id is not None:
        row = tenant_repository.get_active_membership(db, user_id, requested_tenant_id)
        if row is None:
            log_security_event(
                action="tenant_resolve",
                result="denied",
                user_id=user_id,
                tenant_id=requested_tenant_id,
                level="warning",
            )
            raise AccessDeniedError(meta={"tenant_id": requested_tenant_id})
        return _context(*row)

    row = tenant_repository.get_default_membership(db, user_id)
    return _context(*row) if row else None


def set_default_tenant(db: Session, user_id: int, tenant_id: int) -> TenantContext:
    """
    Make tenant_id the user's only default membership.

    The user row is locked first so concurrent calls for the same user apply
    one after the other; each leaves exactly one default behind.

    Raises:
        AccessDeniedError: no active membership in tenant_id
    """
    with atomic(db):
        user_repo.lock_user(db, user_id)
        row = tenant_repository.get_active_membership(db, user_id, tenant_id)
        if row is None:
            raise AccessDeniedError(meta={"tenant_id": tenant_id})
        membership, tenant = row
        tenant_repository.clear_defaults(db, user_id)
        tenant_repository.mark_default(db, membership.id)

    log_security_event(action="default_tenant_set", result="success", user_id=user_id, tenant_id=tenant_id)
    return _context(membership, tenant)


def create_tenant(db: Session, user_id: int, name: str, description: Optional[str] = None,
                  settings: Optional[dict] = None) -> dict:
    """
    Create a tenant owned by user_id. The owner membership becomes the user's default.

    Raises:
        NotFoundError: user does not exist
        ConflictError: tenant name already taken
    """
    with atomic(db, "Tenant name already exists"):
        if user_repo.lock_user(db, user_id) is None:
            raise NotFoundError("User not found")
        if tenant_repository.get_tenant_by_name(db, name) is not None:
            raise ConflictError("Tenant name already exists", meta={"name": name})
        tenant = tenant_repository.create_tenant(db, name, user_id, description=description, settings=settings)
        tenant_repository.clear_defaults(db, user_id)
        membership = tenant_repository.create_membership(db, user_id, tenant.id, "owner", is_default=True)

    log_security_event(action="tenant_create", result="success", user_id=user_id, tenant_id=tenant.id)
    return {
        "id": tenant.id,
        "name": tenant.name,
        "description": tenant.description,
        "owner_id": tenant.owner_id,
        "active": tenant.active,
        "settings": tenant.settings,
        "role": membership.role,
        "is_default": True,
    }


def list_user_tenants(db: Session, user_id: int) -> list[dict]:
    return [
        {
            "tenant_id": tenant.id,
            "tenant_name": tenant.name,
            "role": membership.role,
            "is_default": membership.is_default,
            "active": tenant.active,
        }
        for membership, tenant in tenant_repository.list_user_memberships(db, user_id)
    ]


def get_tenant_for_member(db: Session, user_id: int, tenant_id: int) -> dict:
    """
    Tenant details for one of its members.

    Raises:
        NotFoundError: unknown tenant
        AccessDeniedError: caller has no active membership
    """
    tenant = tenant_repository.get_tenant(db, tenant_id)
    if tenant is None:
        raise NotFoundError("Tenant not found")
    row = tenant_repository.get_active_membership(db, user_id, tenant_id)
    if row is None:
        raise AccessDeniedError(meta={"tenant_id": tenant_id})
    membership, _ = row
    return {
        "id": tenant.id,
        "name": tenant.name,
        "description": tenant.description,
        "owner_id": tenant.owner_id,
        "active": tenant.active,
        "settings": tenant.settings,
        "role": membership.role,
        "is_default": membership.is_default,
    }


def list_members(db: Session, tenant_id: int, page: int, size: int) -> dict:
    offset = (page - 1) * size
    items = [
        {
            "user_id": user.id,
            "email": user.email,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "role": membership.role,
            "active": membership.active,
        }
        for membership, user in tenant_repository.list_tenant_members(db, tenant_id, size, offset)
    ]
    return {"items": items, "page": page, "size": size}


def _require_manager(db: Session, actor_id: int, tenant_id: int) -> Tenant:
    """Caller must be owner or admin of tenant_id according to the membership store."""
    row = tenant_repository.get_active_membership(db, actor_id, tenant_id)
    if row is None:
        raise AccessDeniedError(meta={"tenant_id": tenant_id})
    membership, tenant = row
    if not role_at_least(membership.role, "admin"):
        raise AuthorizationError(
            meta={"required_min_role": "admin", "current_role": membership.role, "tenant_id": tenant_id},
        )
    return tenant


def add_member(db: Session, actor_id: int, tenant_id: int, email: str, role: str = "member") -> dict:
    """
    Add a user (by email) to a tenant, or update the role of an existing member.

    Args:
        db: Database session
        actor_id: Caller; must be owner or admin in the tenant
        tenant_id: Target tenant
        email: Email of the user to add
        role: "admin" or "member"

    Returns:
        Dict describing the membership

    Raises:
        ValidationError: role not assignable
        NotFoundError: no user with that email
        AuthorizationError: caller not a manager, or target is the tenant owner
    """
    if role not in ASSIGNABLE_ROLES:
        raise ValidationError(f"Role must be one of {list(ASSIGNABLE_ROLES)}", meta={"role": role})

    with atomic(db, "User is already a member of this tenant"):
        tenant = _require_manager(db, actor_id, tenant_id)
        user = user_repo.get_user_by_email(db, email)
        if user is None:
            raise NotFoundError("User not found")

        membership = tenant_repository.get_membership(db, user.id, tenant_id)
        if membership is not None:
            if membership.role == "owner" or tenant.owner_id == user.id:
                raise AuthorizationError("The tenant owner's role cannot be changed")
            membership.role = role
            membership.active = True
            created = False
        else:
            membership = tenant_repository.create_membership(db, user.id, tenant_id, role, is_default=False)
            created = True

    log_security_event(
        action="member_add",
        result="success",
        user_id=actor_id,
        tenant_id=tenant_id,
        meta={"member_id": user.id, "role": role, "created": created},
    )
    return {
        "user_id": user.id,
        "email": user.email,
        "tenant_id": tenant_id,
        "role": membership.role,
        "is_default": membership.is_default,
        "created": created,
    }


def remove_member(db: Session, actor_id: int, tenant_id: int, user_id: int) -> None:
    """
    Remove a membership. If it was the user's default, the user's oldest
    remaining active membership becomes default (or none remains).

    Raises:
        AuthorizationError: caller not a manager, or target is the tenant owner
        NotFoundError: user is not a member
    """
    with atomic(db):
        tenant = _require_manager(db, actor_id, tenant_id)
        membership = tenant_repository.get_membership(db, user_id, tenant_id)
        if membership is None:
            raise NotFoundError("Membership not found")
        if tenant.owner_id == user_id or membership.role == "owner":
            log_security_event(
                action="member_remove",
                result="denied",
                user_id=actor_id,
                tenant_id=tenant_id,
                meta={"member_id": user_id, "reason": "owner"},
                level="warning",
            )
            raise AuthorizationError("The tenant owner cannot be removed")

        was_default = membership.is_default
        user_repo.lock_user(db, user_id)
        tenant_repository.delete_membership(db, membership)
        successor = None
        if was_default:
            successor = tenant_repository.oldest_active_membership(db, user_id)
            if successor is not None:
                tenant_repository.mark_default(db, successor.id)

    log_security_event(
        action="member_remove",
        result="success",
        user_id=actor_id,
        tenant_id=tenant_id,
        meta={"member_id": user_id, "new_default_tenant_id": successor.tenant_id if successor else None},
    )
