"""Tests for the SQL data access layer and pipeline adapters."""

from types import SimpleNamespace

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from portal.auth.elevation import CallerContext
from portal.middleware.exceptions import DataFetchError, PermissionErrorCode
from portal.models import ActivityLog, StateAllowedProduct
from portal.services.permissions_store import (
    PermissionsRepository,
    SqlRoleResolver,
    coerce_id,
    normalize_assignment,
)
from portal.services.trace import TraceLog

ADMIN_USER_ID = "11111111-1111-1111-1111-111111111111"
BASIC_USER_ID = "22222222-2222-2222-2222-222222222222"


@pytest.mark.unit
class TestCoercion:
    def test_coerce_id(self):
        assert coerce_id(7) == 7
        assert coerce_id("7") == 7
        assert coerce_id(" 12 ") == 12
        assert coerce_id(None) is None

    @pytest.mark.parametrize("value", [True, "abc", 1.5, "1.0"])
    def test_coerce_id_rejects(self, value):
        with pytest.raises(ValueError):
            coerce_id(value)

    def test_normalize_string_keys(self):
        row = normalize_assignment({"id": "3", "state_id": "5", "product_id": "9"})
        assert (row.id, row.state_id, row.product_id) == (3, 5, 9)

    def test_normalize_orm_like_row(self):
        row = normalize_assignment(SimpleNamespace(id=1, state_id=2, product_id=None))
        assert row.product_id is None


@pytest.mark.integration
@pytest.mark.asyncio
class TestRepositoryReads:
    async def test_list_states_ordered(self, db_session, catalog):
        states = await PermissionsRepository(db_session).list_states()
        assert [s.name for s in states] == ["California", "Nevada", "Texas"]

    async def test_assignments(self, db_session, catalog):
        repo = PermissionsRepository(db_session)
        rows = await repo.list_all_assignments()
        assert {(r.state_id, r.product_id) for r in rows} == {(1, 1), (1, 2)}
        assert await repo.fetch_assignments_for_state(2) == []
        assert await repo.count_assignments_for_state(1) == 2

    async def test_get_state_by_name(self, db_session, catalog):
        repo = PermissionsRepository(db_session)
        assert (await repo.get_state_by_name("Nevada")).id == 2
        assert await repo.get_state_by_name("Atlantis") is None

    async def test_products_carry_brand(self, db_session, catalog):
        products = await PermissionsRepository(db_session).list_products()
        by_id = {p.id: p for p in products}
        assert by_id[1].brand.name == "Yonder"
        assert by_id[4].brand is None

    async def test_state_products_map_skips_dangling_rows(self, db_session, catalog):
        db_session.add(StateAllowedProduct(state_id=2, product_id=None))
        await db_session.commit()
        mapping = await PermissionsRepository(db_session).state_products_map()
        assert sorted(p.id for p in mapping[1]) == [1, 2]
        assert 2 not in mapping

    async def test_get_state_products(self, db_session, catalog):
        products = await PermissionsRepository(db_session).get_state_products(1)
        assert sorted(p.id for p in products) == [1, 2]

    async def test_store_failure_is_data_fetch_error(self, db_session, monkeypatch):
        async def broken_execute(*args, **kwargs):
            raise OperationalError("SELECT", {}, Exception("connection refused"))

        monkeypatch.setattr(db_session, "execute", broken_execute)
        with pytest.raises(DataFetchError) as exc_info:
            await PermissionsRepository(db_session).list_states()
        assert exc_info.value.error_code == PermissionErrorCode.DATA_FETCH_ERROR.value
        assert exc_info.value.status_code == 503


@pytest.mark.integration
@pytest.mark.asyncio
class TestRepositoryReplace:
    async def test_role_resolver(self, db_session, catalog):
        roles = SqlRoleResolver(db_session)
        assert await roles.is_admin(ADMIN_USER_ID) is True
        assert await roles.is_admin(BASIC_USER_ID) is False
        assert await roles.is_admin("unknown") is False

    async def test_replace_round_trip_and_audit(self, db_session, catalog):
        repo = PermissionsRepository(db_session)
        caller = CallerContext.for_user(ADMIN_USER_ID, is_admin=True)

        result = await repo.replace_assignments_for_state(1, [3, 4], caller, TraceLog())
        await db_session.commit()

        assert result.success
        assert result.deleted_count == 2
        rows = await repo.fetch_assignments_for_state(1)
        assert sorted(r.product_id for r in rows) == [3, 4]

        audit = (await db_session.execute(select(ActivityLog))).scalars().all()
        assert len(audit) == 1
        assert audit[0].action == "permissions_replaced"
        assert audit[0].elevation == "admin_role"
        assert audit[0].entity_id == "1"

    async def test_replace_twice_is_idempotent(self, db_session, catalog):
        repo = PermissionsRepository(db_session)
        guest = CallerContext.for_guest("guest-1")
        first = await repo.replace_assignments_for_state(2, [1, 3], guest, TraceLog())
        second = await repo.replace_assignments_for_state(2, [1, 3], guest, TraceLog())
        assert first.success and second.success
        rows = await repo.fetch_assignments_for_state(2)
        assert sorted(r.product_id for r in rows) == [1, 3]

    async def test_replace_with_empty_list(self, db_session, catalog):
        repo = PermissionsRepository(db_session)
        caller = CallerContext.for_user(ADMIN_USER_ID, is_admin=True)
        result = await repo.replace_assignments_for_state(1, [], caller, TraceLog())
        assert result.success
        assert await repo.fetch_assignments_for_state(1) == []

    async def test_demoted_user_rejected_by_live_check(self, db_session, catalog):
        repo = PermissionsRepository(db_session)
        # Token-time context claims admin, but the stored role is basic
        stale = CallerContext.for_user(BASIC_USER_ID, is_admin=True)
        result = await repo.replace_assignments_for_state(1, [3], stale, TraceLog())
        await db_session.commit()
        assert result.code == PermissionErrorCode.ADMIN_REQUIRED
        assert await repo.count_assignments_for_state(1) == 2

        audit = (await db_session.execute(select(ActivityLog))).scalars().all()
        assert audit[0].action == "permissions_replace_failed"
