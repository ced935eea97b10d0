# microauth/api/v1/products.py
from __future__ import annotations
from decimal import Decimal
from typing import Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from microauth.core.auth import Authed, TokenPrincipal, opaque_token_required, tenant_required
from microauth.core.db import get_db
from microauth.core.errors import TenantRequiredError
from microauth.core.roles import require_min_role
from microauth.services import product_service

router = APIRouter(prefix="/api/v1", tags=["products"])


class ProductIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    sku: str = Field(..., min_length=1, max_length=64)
    price: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    stock: int = Field(0, ge=0)
    description: Optional[str] = None


@router.get("/products")
def list_products(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    auth: Authed = Depends(tenant_required),
    db: Session = Depends(get_db),
):
    return {"items": product_service.list_products(db, auth.tenant_id, limit, offset)}


@router.post("/products", status_code=201)
def create_product(body: ProductIn, auth: Authed = Depends(require_min_role("member")),
                   db: Session = Depends(get_db)):
    return product_service.create_product(
        db, auth.tenant_id, auth.user_id, body.name, body.sku, body.price, body.stock, body.description,
    )


@router.get("/products/{product_id}")
def get_product(product_id: int, auth: Authed = Depends(tenant_required), db: Session = Depends(get_db)):
    return product_service.get_product(db, auth.tenant_id, product_id)


@router.delete("/products/{product_id}")
def delete_product(product_id: int, auth: Authed = Depends(require_min_role("admin")),
                   db: Session = Depends(get_db)):
    product_service.delete_product(db, auth.tenant_id, auth.user_id, product_id)
    return {"ok": True}


@router.get("/partner/products")
def list_partner_products(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    principal: TokenPrincipal = Depends(opaque_token_required("read")),
    db: Session = Depends(get_db),
):
    """Catalog of the tenant bound to an OAuth2 access token (password grant with tenant)."""
    if principal.tenant_id is None:
        raise TenantRequiredError("Access token is not bound to a tenant")
    return {"items": product_service.list_products(db, principal.tenant_id, limit, offset, active_only=True)}
