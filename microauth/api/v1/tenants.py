# microauth/api/v1/tenants.py
from __future__ import annotations
from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session
from microauth.core.auth import Authed, auth_required, tenant_required
from microauth.core.db import get_db
from microauth.core.errors import AuthorizationError
from microauth.services import tenant_service

router = APIRouter(prefix="/api/v1/tenants", tags=["tenants"])


class TenantCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None


class MemberAddIn(BaseModel):
    email: EmailStr
    role: str = "member"


def _same_tenant(auth: Authed, tenant_id: int) -> None:
    # Avoid cross-tenant access by token
    if auth.tenant_id != tenant_id:
        raise AuthorizationError("Wrong tenant in token", meta={"tenant_id": tenant_id})


@router.post("", status_code=201)
def create_tenant(body: TenantCreateIn, auth: Authed = Depends(auth_required), db: Session = Depends(get_db)):
    return tenant_service.create_tenant(db, auth.user_id, body.name.strip(), body.description, body.settings)


@router.get("")
def list_tenants(auth: Authed = Depends(auth_required), db: Session = Depends(get_db)):
    return {"items": tenant_service.list_user_tenants(db, auth.user_id)}


@router.get("/{tenant_id}")
def get_tenant(tenant_id: int, auth: Authed = Depends(auth_required), db: Session = Depends(get_db)):
    return tenant_service.get_tenant_for_member(db, auth.user_id, tenant_id)


@router.get("/{tenant_id}/members")
def list_members(
    tenant_id: int,
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    auth: Authed = Depends(tenant_required),
    db: Session = Depends(get_db),
):
    _same_tenant(auth, tenant_id)
    return tenant_service.list_members(db, tenant_id, page, size)


@router.post("/{tenant_id}/members", status_code=201)
def add_member(tenant_id: int, body: MemberAddIn, auth: Authed = Depends(tenant_required),
               db: Session = Depends(get_db)):
    _same_tenant(auth, tenant_id)
    return tenant_service.add_member(db, auth.user_id, tenant_id, body.email.lower(), body.role)


@router.delete("/{tenant_id}/members/{user_id}")
def remove_member(tenant_id: int, user_id: int, auth: Authed = Depends(tenant_required),
                  db: Session = Depends(get_db)):
    _same_tenant(auth, tenant_id)
    tenant_service.remove_member(db, auth.user_id, tenant_id, user_id)
    return {"ok": True}
