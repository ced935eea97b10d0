import random
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from microauth.domain.sqlalchemy_models import UserTenant
from microauth.repositories import tenant_repository, user_repo
from microauth.services import tenant_service


def _seed(Session, tenants: int, default_index=None):
    with Session() as db:
        user = user_repo.create_user(db, "racer@example.com", "not-a-real-hash")
        tenant_ids = []
        for i in range(tenants):
            tenant = tenant_repository.create_tenant(db, f"race-{i}", user.id)
            tenant_repository.create_membership(db, user.id, tenant.id, "member", is_default=(i == default_index))
            tenant_ids.append(tenant.id)
        db.commit()
        return user.id, tenant_ids


def _default_count(Session, user_id):
    with Session() as db:
        return db.scalar(
            select(func.count()).select_from(UserTenant)
            .where(UserTenant.user_id == user_id, UserTenant.is_default.is_(True))
        )


def test_concurrent_set_default_leaves_exactly_one(file_db):
    user_id, tenant_ids = _seed(file_db, tenants=5, default_index=0)
    targets = [random.choice(tenant_ids) for _ in range(40)]

    def set_default(tenant_id):
        with file_db() as db:
            return tenant_service.set_default_tenant(db, user_id, tenant_id).tenant_id

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(set_default, targets))

    assert results == targets
    assert _default_count(file_db, user_id) == 1


def test_no_default_until_one_is_set(file_db):
    user_id, tenant_ids = _seed(file_db, tenants=3)
    assert _default_count(file_db, user_id) == 0

    with file_db() as db:
        tenant_service.set_default_tenant(db, user_id, tenant_ids[2])
    assert _default_count(file_db, user_id) == 1


def test_store_rejects_second_default(file_db):
    user_id, tenant_ids = _seed(file_db, tenants=2, default_index=0)
    with file_db() as db:
        membership = tenant_repository.get_membership(db, user_id, tenant_ids[1])
        membership.is_default = True
        with pytest.raises(IntegrityError):
            db.commit()
