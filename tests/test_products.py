import pytest

ALL_GRANTS = ["client_credentials", "password", "refresh_token"]
WIDGET = {"name": "Widget", "sku": "W-1", "price": "9.99", "stock": 5}


def _create(client, api, token, body=WIDGET):
    return client.post("/api/v1/products", json=body, headers=api.bearer(token))


def test_products_require_tenant_context(api, client):
    api.register("solo@example.com")
    r = client.get("/api/v1/products", headers=api.bearer(api.login("solo@example.com")))
    assert r.status_code == 403
    assert r.json()["detail"]["code"] == "tenant_required"


def test_products_are_tenant_isolated(api, client):
    _, _, acme_token = api.user_with_tenant("a@example.com", "acme")
    _, _, globex_token = api.user_with_tenant("b@example.com", "globex")

    r = _create(client, api, acme_token)
    assert r.status_code == 201
    product = r.json()
    assert product["price"] == "9.99"

    assert client.get(f"/api/v1/products/{product['id']}", headers=api.bearer(acme_token)).status_code == 200
    assert client.get(f"/api/v1/products/{product['id']}", headers=api.bearer(globex_token)).status_code == 404
    assert client.get("/api/v1/products", headers=api.bearer(globex_token)).json()["items"] == []
    assert client.delete(f"/api/v1/products/{product['id']}", headers=api.bearer(globex_token)).status_code == 404

    # the same sku is free in another tenant, taken in the same one
    assert _create(client, api, globex_token).status_code == 201
    assert _create(client, api, acme_token).status_code == 409


def test_delete_requires_admin(api, client):
    _, tenant, owner_token = api.user_with_tenant("owner@example.com", "acme")
    api.register("m@example.com")
    api.add_member(owner_token, tenant["id"], "m@example.com", "member")
    member_token = api.login("m@example.com", tenant_id=tenant["id"])

    product = _create(client, api, member_token).json()
    r = client.delete(f"/api/v1/products/{product['id']}", headers=api.bearer(member_token))
    assert r.status_code == 403
    assert r.json()["detail"]["meta"]["required_min_role"] == "admin"

    assert client.delete(f"/api/v1/products/{product['id']}", headers=api.bearer(owner_token)).status_code == 200
    assert client.get(f"/api/v1/products/{product['id']}", headers=api.bearer(owner_token)).status_code == 404


class TestPartnerCatalog:
    """Opaque OAuth2 access tokens against the partner route."""

    @pytest.fixture
    def setup(self, api, client):
        _, tenant, token = api.user_with_tenant("shop@example.com", "shop-co")
        _create(client, api, token)
        creds = api.register_client(token, "partner", ALL_GRANTS, ["read", "write"])
        return tenant, token, creds

    def _password_token(self, api, tenant, creds, scope="read"):
        r = api.token(creds, grant_type="password", username="shop@example.com", password="s3cret-pass",
                      tenant_id=str(tenant["id"]), scope=scope)
        return r.json()["access_token"]

    def test_lists_tenant_catalog(self, api, client, setup):
        tenant, _, creds = setup
        access = self._password_token(api, tenant, creds)
        r = client.get("/api/v1/partner/products", headers=api.bearer(access))
        assert r.status_code == 200
        assert [p["sku"] for p in r.json()["items"]] == ["W-1"]

    def test_missing_scope_is_insufficient_scope(self, api, client, setup):
        tenant, _, creds = setup
        access = self._password_token(api, tenant, creds, scope="write")
        r = client.get("/api/v1/partner/products", headers=api.bearer(access))
        assert r.status_code == 403
        assert r.json()["detail"]["code"] == "insufficient_scope"

    def test_revoked_token_is_rejected(self, api, client, setup):
        tenant, _, creds = setup
        access = self._password_token(api, tenant, creds)
        client.post("/oauth/revoke", data={"token": access}, auth=creds)
        assert client.get("/api/v1/partner/products", headers=api.bearer(access)).status_code == 401

    def test_token_without_tenant_is_rejected(self, api, client, setup):
        _, _, creds = setup
        access = api.token(creds, grant_type="client_credentials", scope="read").json()["access_token"]
        r = client.get("/api/v1/partner/products", headers=api.bearer(access))
        assert r.status_code == 403
        assert r.json()["detail"]["code"] == "tenant_required"

    def test_signed_jwt_is_not_an_opaque_token(self, api, client, setup):
        _, token, _ = setup
        assert client.get("/api/v1/partner/products", headers=api.bearer(token)).status_code == 401
