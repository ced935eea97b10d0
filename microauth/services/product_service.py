"""
Tenant-scoped product catalog.

Follows Layer 4 rules:
- Every query filters on the caller's tenant_id (from the token, never from the body)
- A product of another tenant is reported as not found, not forbidden
"""
from __future__ import annotations
from decimal import Decimal
from typing import Optional
from sqlalchemy import select
from sqlalchemy.orm import Session
from microauth.core.db import atomic
from microauth.core.errors import NotFoundError
from microauth.core.logger import log_security_event
from microauth.domain.sqlalchemy_models import Product


def _view(product: Product) -> dict:
    return {
        "id": product.id,
        "tenant_id": product.tenant_id,
        "name": product.name,
        "description": product.description,
        "sku": product.sku,
        "price": str(product.price),
        "stock": product.stock,
        "is_active": product.is_active,
    }


def _get_scoped(db: Session, tenant_id: int, product_id: int) -> Product:
    product = db.scalars(
        select(Product).where(Product.id == product_id, Product.tenant_id == tenant_id).limit(1)
    ).first()
    if product is None:
        raise NotFoundError("Product not found")
    return product


def list_products(db: Session, tenant_id: int, limit: int = 50, offset: int = 0,
                  active_only: bool = False) -> list[dict]:
    stmt = select(Product).where(Product.tenant_id == tenant_id)
    if active_only:
        stmt = stmt.where(Product.is_active.is_(True))
    stmt = stmt.order_by(Product.id).limit(limit).offset(offset)
    return [_view(p) for p in db.scalars(stmt)]


def get_product(db: Session, tenant_id: int, product_id: int) -> dict:
    return _view(_get_scoped(db, tenant_id, product_id))


def create_product(db: Session, tenant_id: int, user_id: int, name: str, sku: str, price: Decimal,
                   stock: int = 0, description: Optional[str] = None) -> dict:
    """
    Raises:
        ConflictError: sku already used in this tenant
    """
    with atomic(db, "SKU already exists in this tenant"):
        product = Product(
            tenant_id=tenant_id,
            name=name,
            description=description,
            sku=sku,
            price=price,
            stock=stock,
            is_active=True,
        )
        db.add(product)
        db.flush()

    log_security_event(
        action="product_create", result="success", user_id=user_id, tenant_id=tenant_id,
        meta={"product_id": product.id},
    )
    return _view(product)


def delete_product(db: Session, tenant_id: int, user_id: int, product_id: int) -> None:
    with atomic(db):
        product = _get_scoped(db, tenant_id, product_id)
        db.delete(product)

    log_security_event(
        action="product_delete", result="success", user_id=user_id, tenant_id=tenant_id,
        meta={"product_id": product_id},
    )
