# microauth/repositories/client_repo.py
from __future__ import annotations
from typing import Optional
from sqlalchemy import select
from sqlalchemy.orm import Session
from microauth.domain.sqlalchemy_models import OAuthClient


def get_active_client(db: Session, client_id: str) -> Optional[OAuthClient]:
    return db.scalars(
        select(OAuthClient).where(OAuthClient.id == client_id, OAuthClient.is_active.is_(True)).limit(1)
    ).first()


def get_client_by_name(db: Session, name: str) -> Optional[OAuthClient]:
    return db.scalars(select(OAuthClient).where(OAuthClient.name == name).limit(1)).first()


def create_client(db: Session, client_id: str, name: str, secret_hash: str, redirect_uris: list[str],
                  grant_types: list[str], scopes: list[str], user_id: int | None = None,
                  tenant_id: int | None = None) -> OAuthClient:
    client = OAuthClient(
        id=client_id,
        name=name,
        secret_hash=secret_hash,
        redirect_uris=" ".join(redirect_uris),
        grant_types=" ".join(grant_types),
        scopes=" ".join(scopes),
        user_id=user_id,
        tenant_id=tenant_id,
        is_active=True,
    )
    db.add(client)
    db.flush()
    return client
