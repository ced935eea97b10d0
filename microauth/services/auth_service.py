"""
Authentication service for registration, login and tenant switching.

Follows Layer 1 and Layer 6 rules:
- Validates credentials securely (bcrypt, constant time, unknown users included)
- Returns minimal information on failure (no "user not found vs wrong password" distinction)
- Logs security events (login attempts, tenant switches, password changes)
- NEVER logs plaintext passwords or hashes
"""
from __future__ import annotations
from typing import Optional
from sqlalchemy.orm import Session
from microauth.core.db import atomic
from microauth.core.errors import AuthenticationError, ConflictError, NotFoundError
from microauth.core.jwt_codec import TokenCodec
from microauth.core.logger import log_security_event
from microauth.core.security import hash_password, verify_password
from microauth.domain.models import Claims, TenantContext
from microauth.domain.sqlalchemy_models import User
from microauth.repositories import user_repo
from microauth.services import tenant_service

INVALID_CREDENTIALS = "Invalid credentials"


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _tenant_payload(tenant: Optional[TenantContext]) -> Optional[dict]:
    return tenant.model_dump() if tenant else None


def authenticate(db: Session, email: str, password: str) -> Optional[User]:
    """
    Check an email/password pair.

    Returns:
        The user on success, None on any failure (which one is not disclosed)
    """
    user = user_repo.get_user_by_email(db, _normalize_email(email))
    if not verify_password(password, user.password_hash if user else None):
        log_security_event(
            action="login",
            result="failure",
            user_id=user.id if user else None,
            meta={"reason": "user_not_found" if user is None else "invalid_password"},
            level="warning",
        )
        return None
    return user


def register(db: Session, email: str, password: str,
             first_name: Optional[str] = None, last_name: Optional[str] = None) -> dict:
    """
    Create a new identity.

    Raises:
        ConflictError: email already registered
    """
    email = _normalize_email(email)
    with atomic(db, "Email already registered"):
        if user_repo.get_user_by_email(db, email) is not None:
            raise ConflictError("Email already registered")
        user = user_repo.create_user(db, email, hash_password(password), first_name, last_name)

    log_security_event(action="register", result="success", user_id=user.id)
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
    }


def login_issue_token(
    db: Session,
    codec: TokenCodec,
    email: str,
    password: str,
    tenant_id: Optional[int] = None,
    user_agent: Optional[str] = None,
    ip: Optional[str] = None,
) -> dict:
    """
    Authenticate user and issue JWT token.

    Follows Layer 1 rules:
    - Returns minimal information on failure (no "user not found vs wrong password" distinction)
    - Logs security events for audit

    Args:
        db: Database session
        codec: Token codec configured at startup
        email: User email address
        password: Plaintext password (compared against the stored bcrypt hash)
        tenant_id: Tenant to bind; None falls back to the user's default tenant
        user_agent: HTTP User-Agent header (optional, for logging)
        ip: Client IP address (optional, for logging)

    Returns:
        Dict with token, current_tenant (or None), and tenants list

    Raises:
        AuthenticationError: 401 for invalid credentials
        AccessDeniedError: 403 if tenant_id was requested without an active membership
    """
    user = authenticate(db, email, password)
    if user is None:
        raise AuthenticationError(INVALID_CREDENTIALS)

    tenant = tenant_service.resolve(db, user.id, tenant_id)
    token = codec.encode(Claims.for_identity(user.id, user.email, tenant))

    log_security_event(
        action="login",
        result="success",
        user_id=user.id,
        tenant_id=tenant.tenant_id if tenant else None,
        meta={"role": tenant.role if tenant else None, "ip": ip, "user_agent": user_agent},
    )
    return {
        "ok": True,
        "token": token,
        "current_tenant": _tenant_payload(tenant),
        "tenants": tenant_service.list_user_tenants(db, user.id),
    }


def switch_tenant(db: Session, codec: TokenCodec, user_id: int, email: str, target_tenant_id: int) -> dict:
    """
    Issue a new token bound to another tenant. The presented token is left untouched.

    Raises:
        AccessDeniedError: 403 if user is not an active member of the target tenant
    """
    tenant = tenant_service.resolve(db, user_id, target_tenant_id)

    log_security_event(
        action="tenant_switch",
        result="success",
        user_id=user_id,
        tenant_id=target_tenant_id,
        meta={"role": tenant.role},
    )
    return {
        "token": codec.encode(Claims.for_identity(user_id, email, tenant)),
        "tenant_id": tenant.tenant_id,
        "tenant_name": tenant.tenant_name,
        "role": tenant.role,
    }


def me(db: Session, user_id: int) -> dict:
    user = user_repo.get_user(db, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "tenants": tenant_service.list_user_tenants(db, user.id),
    }


def change_password(db: Session, user_id: int, current_password: str, new_password: str) -> None:
    """
    Replace the password hash after re-checking the current password.

    Raises:
        AuthenticationError: current password does not match
    """
    with atomic(db):
        user = user_repo.get_user(db, user_id)
        if user is None or not verify_password(current_password, user.password_hash):
            log_security_event(action="password_change", result="failure", user_id=user_id, level="warning")
            raise AuthenticationError(INVALID_CREDENTIALS)
        user_repo.set_password_hash(db, user, hash_password(new_password))

    log_security_event(action="password_change", result="success", user_id=user_id)
