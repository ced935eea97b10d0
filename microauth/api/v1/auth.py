"""
Authentication endpoints.

Follows Layer 1 and Layer 3 rules:
- Validate input with Pydantic schemas
- Return minimal information on failure
- ALWAYS use Pydantic models for request/response
"""
from __future__ import annotations
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, Request
from pydantic import AfterValidator, BaseModel, EmailStr, Field
from sqlalchemy.orm import Session
from microauth.core.auth import Authed, auth_required, get_token_codec
from microauth.core.db import get_db
from microauth.core.jwt_codec import TokenCodec
from microauth.domain.models import TenantContext
from microauth.services import auth_service, tenant_service

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


def _fits_bcrypt(value: str) -> str:
    if len(value.encode("utf-8")) > 72:
        raise ValueError("password must be at most 72 bytes")
    return value


NewPassword = Annotated[str, Field(min_length=8, max_length=72), AfterValidator(_fits_bcrypt)]


class RegisterIn(BaseModel):
    """Request schema for registration."""
    email: EmailStr = Field(..., description="User email address")
    password: NewPassword = Field(..., description="User password")
    first_name: Optional[str] = Field(None, max_length=50)
    last_name: Optional[str] = Field(None, max_length=50)


class UserOut(BaseModel):
    id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class LoginIn(BaseModel):
    """Request schema for user login."""
    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., max_length=72, description="User password")
    tenant_id: Optional[int] = Field(None, description="Tenant to bind; defaults to the user's default tenant")


class TenantMembershipOut(BaseModel):
    tenant_id: int
    tenant_name: str
    role: str
    is_default: bool
    active: bool


class LoginOut(BaseModel):
    """Response schema for successful login."""
    ok: bool
    token: str
    current_tenant: Optional[TenantContext] = None
    tenants: list[TenantMembershipOut]


class MeOut(BaseModel):
    """Response schema for /me endpoint."""
    ok: bool
    user_id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    tenant_id: Optional[int] = None
    tenant_name: Optional[str] = None
    role: Optional[str] = None
    tenants: list[TenantMembershipOut]


class SwitchTenantIn(BaseModel):
    """Request schema for tenant switch."""
    tenant_id: int = Field(..., gt=0, description="Target tenant identifier")


class SwitchTenantOut(BaseModel):
    """Response schema for tenant switch."""
    ok: bool
    token: str
    tenant_id: int
    tenant_name: str
    role: str


class DefaultTenantOut(BaseModel):
    ok: bool
    tenant_id: int
    tenant_name: str
    role: str


class ChangePasswordIn(BaseModel):
    current_password: str = Field(..., max_length=72)
    new_password: NewPassword


@router.post("/register", response_model=UserOut, status_code=201)
def register(body: RegisterIn, db: Session = Depends(get_db)) -> dict:
    return auth_service.register(db, body.email, body.password, body.first_name, body.last_name)


@router.post("/login", response_model=LoginOut)
def login(
    body: LoginIn,
    req: Request,
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
) -> dict:
    """
    Authenticate user and issue JWT token.

    Follows Layer 1 rules:
    - Validate input with Pydantic schemas
    - Return minimal information on failure (no "user not found vs wrong password" distinction)

    Args:
        body: Login credentials and optional tenant
        req: FastAPI Request object (for user-agent and IP)

    Returns:
        Dict with token, current_tenant, and tenants list
    """
    ua = req.headers.get("user-agent")
    ip = req.client.host if req.client else None
    return auth_service.login_issue_token(db, codec, body.email, body.password, body.tenant_id, ua, ip)


@router.get("/me", response_model=MeOut)
def me(auth: Authed = Depends(auth_required), db: Session = Depends(get_db)) -> dict:
    """
    Get current authenticated user information.

    Identity and tenant come from the token; profile and memberships from the store.
    """
    profile = auth_service.me(db, auth.user_id)
    return {
        "ok": True,
        "user_id": auth.user_id,
        "email": auth.email,
        "first_name": profile["first_name"],
        "last_name": profile["last_name"],
        "tenant_id": auth.tenant_id,
        "tenant_name": auth.tenant_name,
        "role": auth.role,
        "tenants": profile["tenants"],
    }


@router.post("/switch-tenant", response_model=SwitchTenantOut)
def switch(
    p: SwitchTenantIn,
    auth: Authed = Depends(auth_required),
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
) -> dict:
    """
    Switch user's active tenant. Issues a new token; the presented one stays valid until it expires.
    """
    data = auth_service.switch_tenant(db, codec, auth.user_id, auth.email, p.tenant_id)
    return {"ok": True, **data}


@router.post("/default-tenant", response_model=DefaultTenantOut)
def set_default(p: SwitchTenantIn, auth: Authed = Depends(auth_required), db: Session = Depends(get_db)) -> dict:
    tenant = tenant_service.set_default_tenant(db, auth.user_id, p.tenant_id)
    return {"ok": True, **tenant.model_dump()}


@router.post("/change-password")
def change_password(body: ChangePasswordIn, auth: Authed = Depends(auth_required),
                    db: Session = Depends(get_db)) -> dict:
    auth_service.change_password(db, auth.user_id, body.current_password, body.new_password)
    return {"ok": True}
