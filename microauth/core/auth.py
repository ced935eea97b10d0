"""
Request-boundary authentication (the auth gate).

Follows Layer 1 rules:
- Only accept tokens via secure headers (Authorization: Bearer <token>)
- The signing key lives in the TokenCodec built at startup and injected through app.state
- Include user_id, tenant_id, tenant_name and role in the typed request context
- Opaque OAuth2 tokens are checked against the credential store on every request
- Client secrets are compared with bcrypt (constant time), unknown clients included
"""
from __future__ import annotations
import base64
import binascii
from typing import Callable, List, Optional
from urllib.parse import unquote
from fastapi import Depends, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session
from microauth.core.db import get_db
from microauth.core.errors import (
    AuthenticationError, AuthorizationError, ErrorCode, OAuthError, TenantRequiredError,
)
from microauth.core.jwt_codec import ExpiredError, TokenCodec, TokenError
from microauth.core.logger import log_security_event
from microauth.core.security import hash_token, verify_password
from microauth.domain.sqlalchemy_models import OAuthClient
from microauth.repositories import client_repo, token_repo


class Authed(BaseModel):
    """Authenticated user context with optional tenant and role information."""
    user_id: int
    email: str
    tenant_id: Optional[int] = None
    tenant_name: Optional[str] = None
    role: Optional[str] = None

    @property
    def has_tenant(self) -> bool:
        return self.tenant_id is not None


class TokenPrincipal(BaseModel):
    """Caller identified by a live opaque OAuth2 access token."""
    token_id: str
    client_id: str
    user_id: Optional[int] = None
    tenant_id: Optional[int] = None
    scopes: List[str] = []


def get_token_codec(request: Request) -> TokenCodec:
    return request.app.state.token_codec


def _bearer_token(request: Request) -> str:
    header = request.headers.get("authorization")
    if not header:
        raise AuthenticationError("Missing bearer token")
    parts = header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthenticationError("Authorization header must be 'Bearer <token>'")
    return parts[1]


def auth_required(request: Request, codec: TokenCodec = Depends(get_token_codec)) -> Authed:
    """
    FastAPI dependency that validates the signed JWT from the Authorization header.

    Args:
        request: FastAPI Request object
        codec: Token codec configured at startup

    Returns:
        Authed: Authenticated user context (also stored on request.state.auth)

    Raises:
        AuthenticationError: 401 if token is missing, malformed, tampered or expired
    """
    token = _bearer_token(request)
    try:
        claims = codec.decode(token)
    except ExpiredError:
        raise AuthenticationError("Token has expired")
    except TokenError as exc:
        log_security_event(
            action="jwt_verify",
            result="denied",
            meta={"reason": type(exc).__name__, "path": request.url.path},
            level="warning",
        )
        raise AuthenticationError("Invalid token")

    auth = Authed(
        user_id=claims.user_id,
        email=claims.email,
        tenant_id=claims.tenant_id,
        tenant_name=claims.tenant_name,
        role=claims.role,
    )
    request.state.auth = auth
    return auth


def tenant_required(auth: Authed = Depends(auth_required)) -> Authed:
    """Authenticated context that must carry a tenant; otherwise 403 tenant_required."""
    if not auth.has_tenant:
        raise TenantRequiredError(meta={"user_id": auth.user_id})
    return auth


def opaque_token_required(*scopes: str) -> Callable:
    """
    Guard for resource routes called with OAuth2 opaque access tokens.

    Args:
        *scopes: Scopes the token must all carry

    Returns:
        Dependency function producing a TokenPrincipal

    Example:
        @router.get("/partner/products")
        def list_for_partner(principal: TokenPrincipal = Depends(opaque_token_required("read"))):
            ...
    """
    def _inner(request: Request, db: Session = Depends(get_db)) -> TokenPrincipal:
        raw = _bearer_token(request)
        token = token_repo.get_access_token_by_hash(db, hash_token(raw))
        if token is None or not token.is_valid():
            log_security_event(
                action="opaque_token_verify",
                result="denied",
                meta={"reason": "unknown" if token is None else "revoked_or_expired", "path": request.url.path},
                level="warning",
            )
            raise AuthenticationError("Invalid or expired access token")

        granted = token.scope.split()
        missing = [s for s in scopes if s not in granted]
        if missing:
            raise AuthorizationError(
                "Access token lacks the required scope",
                code=ErrorCode.INSUFFICIENT_SCOPE,
                meta={"required_scopes": list(scopes), "missing": missing},
            )

        principal = TokenPrincipal(
            token_id=token.id,
            client_id=token.client_id,
            user_id=token.user_id,
            tenant_id=token.tenant_id,
            scopes=granted,
        )
        request.state.principal = principal
        return principal
    return _inner


def _basic_credentials(request: Request) -> tuple[str, str]:
    header = request.headers.get("authorization")
    if not header:
        raise OAuthError("invalid_client", "Client authentication required")
    parts = header.split()
    if len(parts) != 2 or parts[0].lower() != "basic":
        raise OAuthError("invalid_client", "Client authentication must use HTTP Basic")
    try:
        decoded = base64.b64decode(parts[1], validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        raise OAuthError("invalid_client", "Malformed client credentials")
    client_id, sep, client_secret = decoded.partition(":")
    if not sep or not client_id:
        raise OAuthError("invalid_client", "Malformed client credentials")
    # RFC 6749 §2.3.1: both parts are form-urlencoded before base64
    return unquote(client_id), unquote(client_secret)


def client_authenticated(request: Request, db: Session = Depends(get_db)) -> OAuthClient:
    """
    HTTP Basic client authentication for the /oauth endpoints.

    Returns:
        The active OAuthClient whose secret matched

    Raises:
        OAuthError: invalid_client (401) for any failure, with one generic description
    """
    client_id, client_secret = _basic_credentials(request)
    client = client_repo.get_active_client(db, client_id)
    if not verify_password(client_secret, client.secret_hash if client else None):
        log_security_event(
            action="client_auth",
            result="failure",
            meta={"client_id": client_id, "reason": "unknown_client" if client is None else "bad_secret"},
            level="warning",
        )
        raise OAuthError("invalid_client", "Client authentication failed")
    request.state.client = client
    return client
