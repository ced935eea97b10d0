import pytest
from sqlalchemy import select

from microauth.core.errors import AccessDeniedError
from microauth.core.security import hash_password
from microauth.domain.sqlalchemy_models import UserTenant
from microauth.repositories import tenant_repository, user_repo
from microauth.services import tenant_service


def _defaults(client, api, email):
    token = api.login(email)
    items = client.get("/api/v1/tenants", headers=api.bearer(token)).json()["items"]
    return [t["tenant_name"] for t in items if t["is_default"]]


def test_create_tenant_conflicts_on_name(api, client):
    _, _, token = api.user_with_tenant("a@example.com", "taken")
    r = client.post("/api/v1/tenants", json={"name": "taken"}, headers=api.bearer(token))
    assert r.status_code == 409


def test_get_tenant_requires_membership(api, client):
    _, mine, token = api.user_with_tenant("a@example.com", "mine")
    _, theirs, _ = api.user_with_tenant("b@example.com", "theirs")

    assert client.get(f"/api/v1/tenants/{mine['id']}", headers=api.bearer(token)).json()["name"] == "mine"
    assert client.get(f"/api/v1/tenants/{theirs['id']}", headers=api.bearer(token)).status_code == 403
    assert client.get("/api/v1/tenants/9999", headers=api.bearer(token)).status_code == 404


def test_member_routes_require_tenant_in_token(api, client):
    api.register("notenant@example.com")
    token = api.login("notenant@example.com")
    r = client.get("/api/v1/tenants/1/members", headers=api.bearer(token))
    assert r.status_code == 403
    assert r.json()["detail"]["code"] == "tenant_required"


def test_member_routes_reject_other_tenant_in_path(api, client):
    _, _, token = api.user_with_tenant("a@example.com", "acme")
    _, other, _ = api.user_with_tenant("b@example.com", "globex")
    r = client.get(f"/api/v1/tenants/{other['id']}/members", headers=api.bearer(token))
    assert r.status_code == 403


def test_add_and_list_members(api, client):
    owner, tenant, token = api.user_with_tenant("owner@example.com", "acme")
    member = api.register("member@example.com")

    r = api.add_member(token, tenant["id"], "member@example.com", "admin")
    assert r.status_code == 201
    assert r.json()["created"] is True
    assert r.json()["is_default"] is False

    r = api.add_member(token, tenant["id"], "member@example.com", "member")
    assert r.json()["created"] is False
    assert r.json()["role"] == "member"

    items = client.get(f"/api/v1/tenants/{tenant['id']}/members", headers=api.bearer(token)).json()["items"]
    assert {(i["email"], i["role"]) for i in items} == {("owner@example.com", "owner"), ("member@example.com", "member")}

    first = client.get(f"/api/v1/tenants/{tenant['id']}/members?page=1&size=1", headers=api.bearer(token)).json()
    second = client.get(f"/api/v1/tenants/{tenant['id']}/members?page=2&size=1", headers=api.bearer(token)).json()
    assert [i["user_id"] for i in first["items"]] == [member["id"]]
    assert [i["user_id"] for i in second["items"]] == [owner["id"]]


def test_add_member_validation(api, client):
    _, tenant, token = api.user_with_tenant("owner@example.com", "acme")
    api.register("m@example.com")

    assert api.add_member(token, tenant["id"], "m@example.com", "owner").status_code == 400
    assert api.add_member(token, tenant["id"], "ghost@example.com").status_code == 404
    # the owner's own membership cannot be downgraded
    assert api.add_member(token, tenant["id"], "owner@example.com", "member").status_code == 403


def test_plain_member_cannot_manage_members(api, client):
    _, tenant, owner_token = api.user_with_tenant("owner@example.com", "acme")
    api.register("m@example.com")
    api.register("x@example.com")
    api.add_member(owner_token, tenant["id"], "m@example.com")

    member_token = api.login("m@example.com", tenant_id=tenant["id"])
    r = api.add_member(member_token, tenant["id"], "x@example.com")
    assert r.status_code == 403


def test_owner_cannot_be_removed(api, client):
    owner, tenant, owner_token = api.user_with_tenant("owner@example.com", "acme")
    api.register("adm@example.com")
    api.add_member(owner_token, tenant["id"], "adm@example.com", "admin")

    for token in (owner_token, api.login("adm@example.com", tenant_id=tenant["id"])):
        r = client.delete(f"/api/v1/tenants/{tenant['id']}/members/{owner['id']}", headers=api.bearer(token))
        assert r.status_code == 403
    assert _defaults(client, api, "owner@example.com") == ["acme"]


def test_remove_missing_member_is_not_found(api, client):
    _, tenant, token = api.user_with_tenant("owner@example.com", "acme")
    r = client.delete(f"/api/v1/tenants/{tenant['id']}/members/4242", headers=api.bearer(token))
    assert r.status_code == 404


def test_removing_default_membership_reassigns_oldest(api, client):
    # u2's memberships in creation order: own-co (owner), acme (member), later-co (member)
    _, acme, acme_token = api.user_with_tenant("u1@example.com", "acme")
    u2, own, u2_token = api.user_with_tenant("u2@example.com", "own-co")
    _, later, later_token = api.user_with_tenant("u3@example.com", "later-co")
    api.add_member(acme_token, acme["id"], "u2@example.com")
    api.add_member(later_token, later["id"], "u2@example.com")

    r = client.post("/api/v1/auth/default-tenant", json={"tenant_id": acme["id"]}, headers=api.bearer(u2_token))
    assert r.status_code == 200
    assert _defaults(client, api, "u2@example.com") == ["acme"]

    r = client.delete(f"/api/v1/tenants/{acme['id']}/members/{u2['id']}", headers=api.bearer(acme_token))
    assert r.status_code == 200
    assert _defaults(client, api, "u2@example.com") == ["own-co"]


def test_removing_last_membership_leaves_no_default(api, client, db_session):
    _, acme, acme_token = api.user_with_tenant("u1@example.com", "acme")
    u2 = api.register("u2@example.com")
    api.add_member(acme_token, acme["id"], "u2@example.com")
    r = client.post("/api/v1/auth/default-tenant", json={"tenant_id": acme["id"]},
                    headers=api.bearer(api.login("u2@example.com")))
    assert r.status_code == 200

    client.delete(f"/api/v1/tenants/{acme['id']}/members/{u2['id']}", headers=api.bearer(acme_token))
    defaults = db_session.scalars(
        select(UserTenant).where(UserTenant.user_id == u2["id"], UserTenant.is_default.is_(True))
    ).all()
    assert defaults == []
    assert tenant_service.resolve(db_session, u2["id"]) is None


def test_removed_member_loses_tenant_access(api, client):
    _, acme, acme_token = api.user_with_tenant("u1@example.com", "acme")
    u2 = api.register("u2@example.com")
    api.add_member(acme_token, acme["id"], "u2@example.com")
    api.login("u2@example.com", tenant_id=acme["id"])

    client.delete(f"/api/v1/tenants/{acme['id']}/members/{u2['id']}", headers=api.bearer(acme_token))
    r = client.post("/api/v1/auth/login",
                    json={"email": "u2@example.com", "password": "s3cret-pass", "tenant_id": acme["id"]})
    assert r.status_code == 403


class TestResolver:
    """Resolver behavior against the store directly."""

    @pytest.fixture
    def seeded(self, db_session):
        alice = user_repo.create_user(db_session, "alice@example.com", hash_password("pw-alice-1"))
        bob = user_repo.create_user(db_session, "bob@example.com", hash_password("pw-bob-123"))
        acme = tenant_repository.create_tenant(db_session, "acme", alice.id)
        globex = tenant_repository.create_tenant(db_session, "globex", bob.id)
        tenant_repository.create_membership(db_session, alice.id, acme.id, "owner", is_default=True)
        tenant_repository.create_membership(db_session, bob.id, globex.id, "owner")
        db_session.commit()
        return alice, bob, acme, globex

    def test_requested_membership_resolves(self, db_session, seeded):
        alice, _, acme, _ = seeded
        ctx = tenant_service.resolve(db_session, alice.id, acme.id)
        assert (ctx.tenant_id, ctx.tenant_name, ctx.role) == (acme.id, "acme", "owner")

    def test_existing_active_tenant_without_membership_is_denied(self, db_session, seeded):
        alice, _, _, globex = seeded
        with pytest.raises(AccessDeniedError):
            tenant_service.resolve(db_session, alice.id, globex.id)

    def test_unknown_tenant_is_denied(self, db_session, seeded):
        alice = seeded[0]
        with pytest.raises(AccessDeniedError):
            tenant_service.resolve(db_session, alice.id, 9999)

    def test_inactive_membership_or_tenant_is_denied(self, db_session, seeded):
        alice, _, acme, _ = seeded
        membership = tenant_repository.get_membership(db_session, alice.id, acme.id)
        membership.active = False
        db_session.commit()
        with pytest.raises(AccessDeniedError):
            tenant_service.resolve(db_session, alice.id, acme.id)

        membership.active = True
        acme.active = False
        db_session.commit()
        with pytest.raises(AccessDeniedError):
            tenant_service.resolve(db_session, alice.id, acme.id)

    def test_default_fallback_and_no_tenant(self, db_session, seeded):
        alice, bob, acme, _ = seeded
        assert tenant_service.resolve(db_session, alice.id).tenant_id == acme.id
        assert tenant_service.resolve(db_session, bob.id) is None

    def test_set_default_requires_membership(self, db_session, seeded):
        alice, _, _, globex = seeded
        with pytest.raises(AccessDeniedError):
            tenant_service.set_default_tenant(db_session, alice.id, globex.id)
