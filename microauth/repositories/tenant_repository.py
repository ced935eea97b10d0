"""
Repository for tenants and user-tenant memberships.

Follows Layer 4 rules:
- Data access MUST be routed through repository layer
- No raw queries inside API routes
- Membership lookups used for authorization only count active rows of active tenants
"""
from __future__ import annotations
from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.orm import Session
from microauth.domain.sqlalchemy_models import Tenant, User, UserTenant


def get_tenant(db: Session, tenant_id: int) -> Optional[Tenant]:
    return db.get(Tenant, tenant_id)


def get_tenant_by_name(db: Session, name: str) -> Optional[Tenant]:
    return db.scalars(select(Tenant).where(Tenant.name == name).limit(1)).first()


def create_tenant(db: Session, name: str, owner_id: int,
                  description: str | None = None, settings: dict | None = None) -> Tenant:
    tenant = Tenant(name=name, owner_id=owner_id, description=description, settings=settings, active=True)
    db.add(tenant)
    db.flush()
    return tenant


def get_membership(db: Session, user_id: int, tenant_id: int) -> Optional[UserTenant]:
    """Membership row regardless of its active flag."""
    return db.scalars(
        select(UserTenant).where(UserTenant.user_id == user_id, UserTenant.tenant_id == tenant_id).limit(1)
    ).first()


def get_active_membership(db: Session, user_id: int, tenant_id: int) -> Optional[tuple[UserTenant, Tenant]]:
    """
    Active membership of user in an active tenant.

    Args:
        db: Database session
        user_id: User identifier
        tenant_id: Tenant identifier

    Returns:
        Tuple of (membership, tenant) or None
    """
    row = db.execute(
        select(UserTenant, Tenant)
        .join(Tenant, Tenant.id == UserTenant.tenant_id)
        .where(
            UserTenant.user_id == user_id,
            UserTenant.tenant_id == tenant_id,
            UserTenant.active.is_(True),
            Tenant.active.is_(True),
        )
        .limit(1)
    ).first()
    return (row[0], row[1]) if row else None


def get_default_membership(db: Session, user_id: int) -> Optional[tuple[UserTenant, Tenant]]:
    row = db.execute(
        select(UserTenant, Tenant)
        .join(Tenant, Tenant.id == UserTenant.tenant_id)
        .where(
            UserTenant.user_id == user_id,
            UserTenant.is_default.is_(True),
            UserTenant.active.is_(True),
            Tenant.active.is_(True),
        )
        .limit(1)
    ).first()
    return (row[0], row[1]) if row else None


def list_user_memberships(db: Session, user_id: int) -> list[tuple[UserTenant, Tenant]]:
    rows = db.execute(
        select(UserTenant, Tenant)
        .join(Tenant, Tenant.id == UserTenant.tenant_id)
        .where(UserTenant.user_id == user_id, UserTenant.active.is_(True))
        .order_by(Tenant.name)
    ).all()
    return [(r[0], r[1]) for r in rows]


def list_tenant_members(db: Session, tenant_id: int, limit: int, offset: int) -> list[tuple[UserTenant, User]]:
    rows = db.execute(
        select(UserTenant, User)
        .join(User, User.id == UserTenant.user_id)
        .where(UserTenant.tenant_id == tenant_id)
        .order_by(User.email)
        .limit(limit)
        .offset(offset)
    ).all()
    return [(r[0], r[1]) for r in rows]


def create_membership(db: Session, user_id: int, tenant_id: int, role: str,
                      is_default: bool = False) -> UserTenant:
    membership = UserTenant(user_id=user_id, tenant_id=tenant_id, role=role, is_default=is_default, active=True)
    db.add(membership)
    db.flush()
    return membership


def clear_defaults(db: Session, user_id: int) -> None:
    db.execute(
        update(UserTenant)
        .where(UserTenant.user_id == user_id, UserTenant.is_default.is_(True))
        .values(is_default=False)
        .execution_options(synchronize_session="fetch")
    )


def mark_default(db: Session, membership_id: int) -> None:
    db.execute(
        update(UserTenant)
        .where(UserTenant.id == membership_id)
        .values(is_default=True)
        .execution_options(synchronize_session="fetch")
    )


def oldest_active_membership(db: Session, user_id: int) -> Optional[UserTenant]:
    return db.scalars(
        select(UserTenant)
        .where(UserTenant.user_id == user_id, UserTenant.active.is_(True))
        .order_by(UserTenant.created_at, UserTenant.id)
        .limit(1)
    ).first()


def delete_membership(db: Session, membership: UserTenant) -> None:
    db.delete(membership)
    db.flush()
