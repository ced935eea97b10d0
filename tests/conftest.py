"""Pytest configuration and fixtures."""

import os

# Settings are read at import time; configure before anything imports microauth
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-signing-secret-0123456789abcdef0123"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["AUTO_CREATE_TABLES"] = "true"
os.environ["LOG_LEVEL"] = "WARNING"

from typing import Optional

import pytest
from fastapi.testclient import TestClient

from microauth.core.db import SessionLocal, build_engine, build_sessionmaker, engine
from microauth.domain.sqlalchemy_models import Base
from microauth.main import app

DEFAULT_PASSWORD = "s3cret-pass"


@pytest.fixture(autouse=True)
def fresh_schema():
    """Every test starts from empty tables on the shared in-memory database."""
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    yield


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def db_session():
    """
    Session on the application's database. Commit before calling the HTTP client:
    the in-memory database is a single shared connection.
    """
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def file_db(tmp_path):
    """Sessionmaker on a SQLite file, for tests that race several connections."""
    file_engine = build_engine(f"sqlite:///{tmp_path / 'concurrency.db'}")
    Base.metadata.create_all(file_engine)
    try:
        yield build_sessionmaker(file_engine)
    finally:
        file_engine.dispose()


@pytest.fixture
def codec():
    return app.state.token_codec


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class Api:
    """Small helper around the HTTP API used to set up scenarios."""

    bearer = staticmethod(bearer)

    def __init__(self, client: TestClient):
        self.client = client

    def register(self, email: str, password: str = DEFAULT_PASSWORD) -> dict:
        r = self.client.post("/api/v1/auth/register", json={"email": email, "password": password})
        assert r.status_code == 201, r.text
        return r.json()

    def login(self, email: str, password: str = DEFAULT_PASSWORD, tenant_id: Optional[int] = None) -> str:
        body = {"email": email, "password": password}
        if tenant_id is not None:
            body["tenant_id"] = tenant_id
        r = self.client.post("/api/v1/auth/login", json=body)
        assert r.status_code == 200, r.text
        return r.json()["token"]

    def create_tenant(self, token: str, name: str) -> dict:
        r = self.client.post("/api/v1/tenants", json={"name": name}, headers=bearer(token))
        assert r.status_code == 201, r.text
        return r.json()

    def user_with_tenant(self, email: str, tenant_name: str) -> tuple:
        """Register, create a tenant, and log in bound to it. Returns (user, tenant, token)."""
        user = self.register(email)
        tenant = self.create_tenant(self.login(email), tenant_name)
        return user, tenant, self.login(email, tenant_id=tenant["id"])

    def add_member(self, token: str, tenant_id: int, email: str, role: str = "member"):
        return self.client.post(
            f"/api/v1/tenants/{tenant_id}/members",
            json={"email": email, "role": role},
            headers=bearer(token),
        )

    def register_client(self, token: str, name: str, grants: list, scopes: list) -> tuple:
        r = self.client.post(
            "/oauth/clients",
            json={"name": name, "redirect_uris": ["https://app.example.com/cb"], "grants": grants, "scopes": scopes},
            headers=bearer(token),
        )
        assert r.status_code == 201, r.text
        body = r.json()
        return body["client_id"], body["client_secret"]

    def token(self, creds: tuple, **form):
        return self.client.post("/oauth/token", data=form, auth=creds)


@pytest.fixture
def api(client) -> Api:
    return Api(client)
