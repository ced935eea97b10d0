from concurrent.futures import ThreadPoolExecutor

from microauth.core.errors import OAuthError
from microauth.repositories import client_repo
from microauth.services.grant_service import GrantHandler, TokenRequest

CLIENT_ID = "cli_racer"


def _seed_client(Session) -> None:
    with Session() as db:
        client_repo.create_client(
            db, CLIENT_ID, "racer-app", "not-a-real-hash", [],
            ["client_credentials", "refresh_token"], ["read"],
        )
        db.commit()


def _issue(Session, handler: GrantHandler, req: TokenRequest):
    with Session() as db:
        client = client_repo.get_active_client(db, CLIENT_ID)
        try:
            return handler.issue(db, client, req)
        except OAuthError as exc:
            return exc.error


def test_concurrent_refresh_exchanges_succeed_once(file_db):
    handler = GrantHandler(access_ttl=3600, refresh_ttl=86400)
    _seed_client(file_db)

    for _ in range(5):
        pair = _issue(file_db, handler, TokenRequest(grant_type="client_credentials", scope="read"))
        exchange = TokenRequest(grant_type="refresh_token", refresh_token=pair["refresh_token"])

        with ThreadPoolExecutor(max_workers=4) as pool:
            outcomes = list(pool.map(lambda _: _issue(file_db, handler, exchange), range(4)))

        issued = [o for o in outcomes if isinstance(o, dict)]
        assert len(issued) == 1
        assert issued[0]["scope"] == "read"
        assert sorted(o for o in outcomes if not isinstance(o, dict)) == ["invalid_grant"] * 3
