"""
OAuth2 grant handling: token issuance, introspection and revocation.

Follows Layer 1 and Layer 4 rules:
- The calling client is already authenticated by the auth gate (HTTP Basic)
- A client can never obtain a grant type or scope it was not registered for
- Refresh tokens are one-time use; the exchange consumes the old token atomically
- Failures of the refresh precondition are indistinguishable to the caller
- Raw tokens are returned once and only their digests are stored
"""
from __future__ import annotations
from typing import Dict, List, Optional
from pydantic import BaseModel
from sqlalchemy.orm import Session
from microauth.core.db import atomic
from microauth.core.errors import AccessDeniedError, OAuthError
from microauth.core.logger import log_security_event
from microauth.core.security import generate_secure_id, generate_secure_token, hash_token
from microauth.domain.sqlalchemy_models import AccessToken, OAuthClient
from microauth.repositories import tenant_repository, token_repo
from microauth.services import auth_service, tenant_service
from microauth.utils.clock import expires_in, to_epoch

SUPPORTED_GRANT_TYPES = ("client_credentials", "password", "refresh_token")

_INVALID_REFRESH = "Invalid refresh token"


class TokenRequest(BaseModel):
    """Form fields accepted by the token endpoint."""
    grant_type: Optional[str] = None
    scope: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    refresh_token: Optional[str] = None
    tenant_id: Optional[str] = None


def intersect_scopes(requested: Optional[str], allowed: List[str]) -> List[str]:
    """
    Scopes granted for a request.

    Requested order is kept, duplicates and scopes the client is not allowed are
    dropped silently. An empty request means every allowed scope.
    """
    if not requested or not requested.split():
        return list(allowed)
    allowed_set = set(allowed)
    granted: List[str] = []
    for scope in requested.split():
        if scope in allowed_set and scope not in granted:
            granted.append(scope)
    return granted


def _parse_tenant_id(raw: Optional[str]) -> Optional[int]:
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise OAuthError("invalid_request", "tenant_id must be an integer")


class GrantHandler:
    """
    Dispatches token requests by grant type and mints access/refresh pairs.

    Args:
        access_ttl: Access token lifetime in seconds
        refresh_ttl: Refresh token lifetime in seconds
    """

    def __init__(self, access_ttl: int, refresh_ttl: int) -> None:
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._grants = {
            "client_credentials": self._client_credentials,
            "password": self._password,
            "refresh_token": self._refresh_token,
        }

    def issue(self, db: Session, client: OAuthClient, req: TokenRequest) -> Dict:
        """
        Handle one token request for an authenticated client.

        Returns:
            {access_token, token_type, expires_in, refresh_token, scope}

        Raises:
            OAuthError: invalid_request, unsupported_grant_type, unauthorized_client,
                invalid_grant
        """
        grant_type = (req.grant_type or "").strip()
        if not grant_type:
            raise OAuthError("invalid_request", "grant_type is required")
        handler = self._grants.get(grant_type)
        if handler is None:
            raise OAuthError("unsupported_grant_type", f"Grant type '{grant_type}' is not supported")
        if grant_type not in client.grant_type_set:
            log_security_event(
                action="token_issue",
                result="denied",
                meta={"client_id": client.id, "grant_type": grant_type, "reason": "unauthorized_client"},
                level="warning",
            )
            raise OAuthError("unauthorized_client", "Client is not allowed to use this grant type")
        return handler(db, client, req)

    def _mint_pair(self, db: Session, client_id: str, scopes: List[str],
                   user_id: Optional[int], tenant_id: Optional[int]) -> Dict:
        raw_access = generate_secure_token()
        raw_refresh = generate_secure_token()
        scope = " ".join(scopes)
        access = token_repo.create_access_token(
            db,
            generate_secure_id("tok_"),
            hash_token(raw_access),
            client_id,
            scope,
            expires_in(self.access_ttl),
            user_id=user_id,
            tenant_id=tenant_id,
        )
        token_repo.create_refresh_token(
            db,
            generate_secure_id("ref_"),
            hash_token(raw_refresh),
            access,
            expires_in(self.refresh_ttl),
        )
        return {
            "access_token": raw_access,
            "token_type": "Bearer",
            "expires_in": self.access_ttl,
            "refresh_token": raw_refresh,
            "scope": scope,
        }

    def _client_credentials(self, db: Session, client: OAuthClient, req: TokenRequest) -> Dict:
        scopes = intersect_scopes(req.scope, client.scope_list)
        with atomic(db):
            pair = self._mint_pair(db, client.id, scopes, None, None)
        log_security_event(
            action="token_issue",
            result="success",
            meta={"client_id": client.id, "grant_type": "client_credentials", "scope": pair["scope"]},
        )
        return pair

    def _password(self, db: Session, client: OAuthClient, req: TokenRequest) -> Dict:
        if not req.username or not req.password:
            raise OAuthError("invalid_request", "username and password are required")
        requested_tenant = _parse_tenant_id(req.tenant_id)

        user = auth_service.authenticate(db, req.username, req.password)
        if user is None:
            raise OAuthError("invalid_grant", "Invalid username or password")
        try:
            tenant = tenant_service.resolve(db, user.id, requested_tenant)
        except AccessDeniedError:
            raise OAuthError("invalid_grant", "access denied to the requested tenant")

        scopes = intersect_scopes(req.scope, client.scope_list)
        tenant_id = tenant.tenant_id if tenant else None
        with atomic(db):
            pair = self._mint_pair(db, client.id, scopes, user.id, tenant_id)
        log_security_event(
            action="token_issue",
            result="success",
            user_id=user.id,
            tenant_id=tenant_id,
            meta={"client_id": client.id, "grant_type": "password", "scope": pair["scope"]},
        )
        return pair

    def _refresh_token(self, db: Session, client: OAuthClient, req: TokenRequest) -> Dict:
        if not req.refresh_token:
            raise OAuthError("invalid_request", "refresh_token is required")

        with atomic(db):
            refresh = token_repo.find_live_refresh_token(db, hash_token(req.refresh_token), client.id)
            if refresh is None or refresh.is_expired():
                raise OAuthError("invalid_grant", _INVALID_REFRESH)
            previous: AccessToken = refresh.access_token
            if previous.tenant_id is not None and previous.user_id is not None:
                if tenant_repository.get_active_membership(db, previous.user_id, previous.tenant_id) is None:
                    raise OAuthError("invalid_grant", _INVALID_REFRESH)
            if not token_repo.consume_refresh_token(db, refresh.id):
                raise OAuthError("invalid_grant", _INVALID_REFRESH)
            pair = self._mint_pair(
                db, client.id, previous.scope.split(), previous.user_id, previous.tenant_id,
            )

        log_security_event(
            action="token_refresh",
            result="success",
            user_id=previous.user_id,
            tenant_id=previous.tenant_id,
            meta={"client_id": client.id, "scope": pair["scope"]},
        )
        return pair


def introspect(db: Session, client: OAuthClient, token: Optional[str]) -> Dict:
    """
    Describe an access token issued to the calling client.

    Unknown, revoked and expired tokens are {"active": False}, and so are tokens of
    other clients: their user and tenant ids are not disclosed.

    Raises:
        OAuthError: invalid_request when token is missing
    """
    if not token:
        raise OAuthError("invalid_request", "token is required")
    access = token_repo.get_access_token_by_hash(db, hash_token(token))
    if access is None or access.client_id != client.id or not access.is_valid():
        return {"active": False}

    response: Dict = {
        "active": True,
        "client_id": access.client_id,
        "exp": to_epoch(access.expires_at),
        "iat": to_epoch(access.created_at),
        "scope": access.scope,
    }
    if access.user_id is not None:
        response["user_id"] = access.user_id
    if access.tenant_id is not None:
        response["tenant_id"] = access.tenant_id
    return response


def revoke(db: Session, client: OAuthClient, token: Optional[str], token_type_hint: Optional[str] = None) -> None:
    """
    Revoke an access or refresh token issued to the calling client.

    Unknown tokens, tokens of other clients and already revoked tokens are not
    errors; the caller always gets success.

    Raises:
        OAuthError: invalid_request when token is missing
    """
    if not token:
        raise OAuthError("invalid_request", "token is required")
    digest = hash_token(token)
    attempts = [token_repo.revoke_access_token, token_repo.revoke_refresh_token]
    if token_type_hint == "refresh_token":
        attempts.reverse()

    with atomic(db):
        revoked_id = None
        for attempt in attempts:
            revoked_id = attempt(db, digest, client.id)
            if revoked_id is not None:
                break

    log_security_event(
        action="token_revoke",
        result="success" if revoked_id else "noop",
        meta={"client_id": client.id, "token_id": revoked_id, "hint": token_type_hint},
    )
