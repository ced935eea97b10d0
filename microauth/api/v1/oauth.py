"""
OAuth2 endpoints: client registration, token, revocation and introspection.

Follows Layer 1 and Layer 3 rules:
- Token endpoints are form-encoded and client-authenticated with HTTP Basic
- Errors use the OAuth2 shape {"error", "error_description"}
- Token responses are never cached (Cache-Control: no-store)
"""
from __future__ import annotations
from typing import List, Optional
from fastapi import APIRouter, Depends, Form, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from microauth.core.auth import Authed, auth_required, client_authenticated
from microauth.core.db import get_db
from microauth.domain.sqlalchemy_models import OAuthClient
from microauth.services import client_service, grant_service
from microauth.services.grant_service import GrantHandler, TokenRequest

router = APIRouter(prefix="/oauth", tags=["oauth"])

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


class ClientRegisterIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    redirect_uris: List[str] = []
    grants: List[str] = Field(..., description="Subset of client_credentials, password, refresh_token")
    scopes: List[str] = []


class TokenOut(BaseModel):
    access_token: str
    token_type: str
    expires_in: int
    refresh_token: str
    scope: str


def get_grant_handler(request: Request) -> GrantHandler:
    return request.app.state.grant_handler


@router.post("/clients", status_code=201)
def register_client(body: ClientRegisterIn, response: Response, auth: Authed = Depends(auth_required),
                    db: Session = Depends(get_db)) -> dict:
    """Register a client owned by the caller. The secret is only ever shown in this response."""
    response.headers.update(_NO_STORE)
    return client_service.register_client(
        db, body.name, body.redirect_uris, body.grants, body.scopes,
        owner_id=auth.user_id, tenant_id=auth.tenant_id,
    )


@router.get("/clients/{client_id}")
def get_client(client_id: str, client: OAuthClient = Depends(client_authenticated)) -> dict:
    return client_service.get_client(client, client_id)


@router.post("/token", response_model=TokenOut)
def token(
    response: Response,
    grant_type: Optional[str] = Form(None),
    scope: Optional[str] = Form(None),
    username: Optional[str] = Form(None),
    password: Optional[str] = Form(None),
    refresh_token: Optional[str] = Form(None),
    tenant_id: Optional[str] = Form(None),
    client: OAuthClient = Depends(client_authenticated),
    handler: GrantHandler = Depends(get_grant_handler),
    db: Session = Depends(get_db),
) -> dict:
    req = TokenRequest(
        grant_type=grant_type,
        scope=scope,
        username=username,
        password=password,
        refresh_token=refresh_token,
        tenant_id=tenant_id,
    )
    pair = handler.issue(db, client, req)
    response.headers.update(_NO_STORE)
    return pair


@router.post("/revoke")
def revoke(
    token: Optional[str] = Form(None),
    token_type_hint: Optional[str] = Form(None),
    client: OAuthClient = Depends(client_authenticated),
    db: Session = Depends(get_db),
) -> dict:
    grant_service.revoke(db, client, token, token_type_hint)
    return {}


@router.post("/introspect")
def introspect(
    response: Response,
    token: Optional[str] = Form(None),
    client: OAuthClient = Depends(client_authenticated),
    db: Session = Depends(get_db),
) -> dict:
    response.headers.update(_NO_STORE)
    return grant_service.introspect(db, client, token)
