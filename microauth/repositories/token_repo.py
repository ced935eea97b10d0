"""
Repository for persisted OAuth2 access and refresh tokens.

Tokens are looked up by the SHA-256 digest of the presented string; the raw
value never reaches the database. Revocation is one-way: no function here sets
revoked back to False.
"""
from __future__ import annotations
from datetime import datetime
from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.orm import Session
from microauth.domain.sqlalchemy_models import AccessToken, RefreshToken


def create_access_token(db: Session, token_id: str, token_hash: str, client_id: str, scope: str,
                        expires_at: datetime, user_id: int | None = None,
                        tenant_id: int | None = None) -> AccessToken:
    token = AccessToken(
        id=token_id,
        token_hash=token_hash,
        client_id=client_id,
        user_id=user_id,
        tenant_id=tenant_id,
        scope=scope,
        expires_at=expires_at,
        revoked=False,
    )
    db.add(token)
    db.flush()
    return token


def create_refresh_token(db: Session, token_id: str, token_hash: str, access_token: AccessToken,
                         expires_at: datetime) -> RefreshToken:
    token = RefreshToken(
        id=token_id,
        token_hash=token_hash,
        access_token_id=access_token.id,
        client_id=access_token.client_id,
        user_id=access_token.user_id,
        tenant_id=access_token.tenant_id,
        expires_at=expires_at,
        revoked=False,
    )
    db.add(token)
    db.flush()
    return token


def get_access_token_by_hash(db: Session, token_hash: str) -> Optional[AccessToken]:
    return db.scalars(select(AccessToken).where(AccessToken.token_hash == token_hash).limit(1)).first()


def find_live_refresh_token(db: Session, token_hash: str, client_id: str) -> Optional[RefreshToken]:
    """Unrevoked refresh token issued to client_id; expiry is checked by the caller."""
    return db.scalars(
        select(RefreshToken)
        .where(
            RefreshToken.token_hash == token_hash,
            RefreshToken.client_id == client_id,
            RefreshToken.revoked.is_(False),
        )
        .limit(1)
    ).first()


def consume_refresh_token(db: Session, refresh_token_id: str) -> bool:
    """
    Atomically flip revoked False -> True.

    Returns:
        True if this call retired the token, False if someone else already did
    """
    result = db.execute(
        update(RefreshToken)
        .where(RefreshToken.id == refresh_token_id, RefreshToken.revoked.is_(False))
        .values(revoked=True)
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount == 1


def revoke_access_token(db: Session, token_hash: str, client_id: str) -> Optional[str]:
    """Revoke an access token owned by client_id; returns its id when a row matched."""
    token = db.scalars(
        select(AccessToken).where(AccessToken.token_hash == token_hash, AccessToken.client_id == client_id).limit(1)
    ).first()
    if token is None:
        return None
    token.revoked = True
    db.flush()
    return token.id


def revoke_refresh_token(db: Session, token_hash: str, client_id: str) -> Optional[str]:
    """Revoke a refresh token owned by client_id together with its paired access token."""
    token = db.scalars(
        select(RefreshToken).where(RefreshToken.token_hash == token_hash, RefreshToken.client_id == client_id).limit(1)
    ).first()
    if token is None:
        return None
    token.revoked = True
    db.execute(
        update(AccessToken)
        .where(AccessToken.id == token.access_token_id)
        .values(revoked=True)
        .execution_options(synchronize_session="fetch")
    )
    db.flush()
    return token.id
