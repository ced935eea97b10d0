"""
SQLAlchemy models for the multi-tenant identity and OAuth2 credential store.

Uniqueness that guards against races lives here, not in application checks:
- users.email, tenants.name, oauth_clients.name
- one membership per (user, tenant)
- at most one default membership per user (partial unique index)
- one sku per tenant for products
"""
from __future__ import annotations
from sqlalchemy import (
    Column, String, Boolean, Integer, ForeignKey, Text, DateTime, Numeric, JSON,
    Index, UniqueConstraint, text,
)
from sqlalchemy.orm import declarative_base, relationship
from microauth.utils.clock import utcnow

Base = declarative_base()


class User(Base):
    """
    Identity that can belong to many tenants with a different role in each.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(50), nullable=True)
    last_name = Column(String(50), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    tenant_memberships = relationship("UserTenant", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"


class Tenant(Base):
    """
    Organizational boundary. The creator becomes owner and gets an "owner" membership.
    """
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    active = Column(Boolean, nullable=False, default=True)
    settings = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    members = relationship("UserTenant", back_populates="tenant", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, name={self.name})>"


class UserTenant(Base):
    """
    Membership linking a user to a tenant with a free-form role
    ("owner", "admin", "member", ...).
    """
    __tablename__ = "user_tenants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(50), nullable=False, default="member")
    is_default = Column(Boolean, nullable=False, default=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "tenant_id", name="uq_user_tenants_user_tenant"),
        Index(
            "uq_user_tenants_one_default",
            "user_id",
            unique=True,
            postgresql_where=text("is_default"),
            sqlite_where=text("is_default = 1"),
        ),
    )

    # Relationships
    user = relationship("User", back_populates="tenant_memberships")
    tenant = relationship("Tenant", back_populates="members")

    def __repr__(self) -> str:
        return f"<UserTenant(user_id={self.user_id}, tenant_id={self.tenant_id}, role={self.role})>"


class OAuthClient(Base):
    """
    OAuth2 application. Grant types, scopes and redirect URIs are space-delimited sets.
    """
    __tablename__ = "oauth_clients"

    id = Column(String(64), primary_key=True)
    name = Column(String(100), unique=True, nullable=False)
    secret_hash = Column(String(255), nullable=False)
    redirect_uris = Column(Text, nullable=False, default="")
    grant_types = Column(Text, nullable=False, default="")
    scopes = Column(Text, nullable=False, default="")
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def grant_type_set(self) -> set[str]:
        return set(self.grant_types.split())

    @property
    def scope_list(self) -> list[str]:
        return self.scopes.split()

    @property
    def redirect_uri_list(self) -> list[str]:
        return self.redirect_uris.split()

    def __repr__(self) -> str:
        return f"<OAuthClient(id={self.id}, name={self.name})>"


class _TokenMixin:
    """Columns shared by access and refresh tokens."""

    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    tenant_id = Column(Integer, nullable=True, index=True)
    expires_at = Column(DateTime, nullable=False)
    revoked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def is_expired(self) -> bool:
        return utcnow() >= self.expires_at

    def is_valid(self) -> bool:
        return not self.revoked and not self.is_expired()


class AccessToken(_TokenMixin, Base):
    __tablename__ = "oauth_access_tokens"

    id = Column(String(64), primary_key=True)
    client_id = Column(String(64), ForeignKey("oauth_clients.id", ondelete="CASCADE"), nullable=False, index=True)
    scope = Column(Text, nullable=False, default="")

    def __repr__(self) -> str:
        return f"<AccessToken(id={self.id}, client_id={self.client_id}, revoked={self.revoked})>"


class RefreshToken(_TokenMixin, Base):
    __tablename__ = "oauth_refresh_tokens"

    id = Column(String(64), primary_key=True)
    client_id = Column(String(64), ForeignKey("oauth_clients.id", ondelete="CASCADE"), nullable=False, index=True)
    access_token_id = Column(String(64), ForeignKey("oauth_access_tokens.id", ondelete="CASCADE"), nullable=False)

    access_token = relationship("AccessToken")

    def __repr__(self) -> str:
        return f"<RefreshToken(id={self.id}, client_id={self.client_id}, revoked={self.revoked})>"


class Product(Base):
    """
    Tenant-scoped catalog item. Every read and write filters on tenant_id.
    """
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    sku = Column(String(64), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("tenant_id", "sku", name="uq_products_tenant_sku"),
    )

    def __repr__(self) -> str:
        return f"<Product(id={self.id}, tenant_id={self.tenant_id}, sku={self.sku})>"
