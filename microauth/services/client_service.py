# microauth/services/client_service.py
from __future__ import annotations
from typing import List, Optional
from sqlalchemy.orm import Session
from microauth.core.db import atomic
from microauth.core.errors import ConflictError, NotFoundError, OAuthError
from microauth.core.logger import log_security_event
from microauth.core.security import generate_secure_id, generate_secure_token, hash_password
from microauth.domain.sqlalchemy_models import OAuthClient
from microauth.repositories import client_repo
from microauth.services.grant_service import SUPPORTED_GRANT_TYPES


def _dedupe(values: List[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        value = value.strip()
        if value and value not in seen:
            seen.append(value)
    return seen


def _client_view(client: OAuthClient) -> dict:
    return {
        "client_id": client.id,
        "name": client.name,
        "redirect_uris": client.redirect_uri_list,
        "grants": sorted(client.grant_type_set),
        "scopes": client.scope_list,
        "user_id": client.user_id,
        "tenant_id": client.tenant_id,
        "is_active": client.is_active,
    }


def register_client(db: Session, name: str, redirect_uris: List[str], grants: List[str], scopes: List[str],
                    owner_id: int, tenant_id: Optional[int] = None) -> dict:
    """
    Register an OAuth2 client owned by the caller. The plaintext secret is returned once.

    Args:
        db: Database session
        name: Unique client name
        redirect_uris: Allowed redirect URIs
        grants: Requested grant types; must be a non-empty subset of the supported ones
        scopes: Scopes the client may request
        owner_id: Caller's user id (from claims)
        tenant_id: Caller's current tenant (from claims), if any

    Raises:
        OAuthError: invalid_request for an empty name or unsupported grants
        ConflictError: client name already registered
    """
    name = name.strip()
    grants = _dedupe(grants)
    if not name:
        raise OAuthError("invalid_request", "name is required")
    if not grants:
        raise OAuthError("invalid_request", "at least one grant type is required")
    unsupported = [g for g in grants if g not in SUPPORTED_GRANT_TYPES]
    if unsupported:
        raise OAuthError("invalid_request", f"unsupported grant types: {' '.join(unsupported)}")

    secret = generate_secure_token()
    with atomic(db, "Client name already exists"):
        if client_repo.get_client_by_name(db, name) is not None:
            raise ConflictError("Client name already exists", meta={"name": name})
        client = client_repo.create_client(
            db,
            generate_secure_id("cli_"),
            name,
            hash_password(secret),
            _dedupe(redirect_uris),
            grants,
            _dedupe(scopes),
            user_id=owner_id,
            tenant_id=tenant_id,
        )

    log_security_event(
        action="client_register",
        result="success",
        user_id=owner_id,
        tenant_id=tenant_id,
        meta={"client_id": client.id, "grants": grants},
    )
    return {**_client_view(client), "client_secret": secret}


def get_client(caller: OAuthClient, client_id: str) -> dict:
    """A client can only read its own registration; any other id is reported as missing."""
    if caller.id != client_id:
        raise NotFoundError("Client not found")
    return _client_view(caller)
