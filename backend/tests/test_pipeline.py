"""Tests for the permissions mutation pipeline with in-memory collaborators."""

import pytest

from portal.auth.elevation import CallerContext
from portal.middleware.exceptions import PermissionErrorCode
from portal.services.notices import NoticeBoard
from portal.services.permissions_pipeline import (
    PermissionsPipeline,
    PipelineStage,
    SaveResult,
    StoreError,
)
from portal.services.trace import StageStatus, TraceLog


class FakeStore:
    """In-memory AssignmentStore with per-operation failure switches."""

    def __init__(self, rows: dict[int, list[int]] | None = None):
        self.rows = {k: list(v) for k, v in (rows or {}).items()}
        self.fail_delete: str | None = None
        self.fail_insert: str | None = None
        self.fail_read: str | None = None
        self.extra_on_read: list[int] = []
        self.insert_calls = 0

    async def delete_for_state(self, state_id):
        if self.fail_delete:
            raise StoreError(self.fail_delete)
        return len(self.rows.pop(state_id, []))

    async def insert_for_state(self, state_id, product_ids):
        self.insert_calls += 1
        if self.fail_insert:
            raise StoreError(self.fail_insert)
        self.rows.setdefault(state_id, []).extend(product_ids)
        return len(product_ids)

    async def product_ids_for_state(self, state_id):
        if self.fail_read:
            raise StoreError(self.fail_read)
        return list(self.rows.get(state_id, [])) + self.extra_on_read


class FakeRoles:
    def __init__(self, admins=(), fail=False):
        self.admins = set(admins)
        self.fail = fail
        self.calls = 0

    async def is_admin(self, user_id):
        self.calls += 1
        if self.fail:
            raise RuntimeError("role service unavailable")
        return user_id in self.admins


ADMIN = CallerContext.for_user("admin-1", is_admin=True)
GUEST = CallerContext.for_guest("guest-1")


def make_pipeline(store=None, roles=None, audit=None):
    return PermissionsPipeline(
        store=store or FakeStore(),
        roles=roles or FakeRoles(admins={"admin-1"}),
        trace=TraceLog(),
        notices=NoticeBoard(),
        audit=audit,
    )


@pytest.mark.unit
@pytest.mark.asyncio
class TestPipelineHappyPath:
    async def test_round_trip(self):
        store = FakeStore({5: [1, 2]})
        result = await make_pipeline(store).run(5, [3, 4], ADMIN)
        assert result.success
        assert sorted(store.rows[5]) == [3, 4]
        assert result.deleted_count == 2
        assert result.inserted_count == 2
        assert sorted(result.verified_ids) == [3, 4]

    async def test_idempotent(self):
        store = FakeStore()
        first = await make_pipeline(store).run(5, [3, 4], ADMIN)
        second = await make_pipeline(store).run(5, [3, 4], ADMIN)
        assert first.success and second.success
        assert sorted(store.rows[5]) == [3, 4]

    async def test_empty_list_clears_state_and_skips_insert(self):
        store = FakeStore({5: [1, 2]})
        result = await make_pipeline(store).run(5, [], ADMIN)
        assert result.success
        assert store.rows.get(5, []) == []
        assert store.insert_calls == 0
        assert result.inserted_count == 0

    async def test_duplicate_ids_collapsed(self):
        store = FakeStore()
        result = await make_pipeline(store).run(5, [3, 3, 4], ADMIN)
        assert result.success
        assert result.requested_ids == [3, 4]
        assert store.rows[5] == [3, 4]

    async def test_transitions(self):
        pipeline = make_pipeline()
        await pipeline.run(5, [1], ADMIN)
        assert pipeline.transitions == [
            PipelineStage.IDLE,
            PipelineStage.AUTHORIZING,
            PipelineStage.DELETING,
            PipelineStage.INSERTING,
            PipelineStage.VERIFYING,
            PipelineStage.SUCCEEDED,
        ]
        assert pipeline.stage == PipelineStage.SUCCEEDED

    async def test_every_stage_logged_at_start_and_end(self):
        pipeline = make_pipeline()
        await pipeline.run(5, [1], ADMIN)
        staged = [(e.stage, e.status) for e in pipeline.trace.entries() if e.status]
        for stage in ("authorize", "delete", "insert", "verify"):
            assert (stage, StageStatus.START) in staged
            assert (stage, StageStatus.COMPLETE) in staged

    async def test_guest_grant_skips_role_lookup(self):
        roles = FakeRoles()
        result = await make_pipeline(roles=roles).run(5, [1], GUEST)
        assert result.success
        assert roles.calls == 0
        assert result.grant["kind"] == "guest_override"


@pytest.mark.unit
@pytest.mark.asyncio
class TestPipelineFailures:
    async def test_live_role_revoked(self):
        # Context says admin, but the role was removed since page load
        roles = FakeRoles(admins=set())
        store = FakeStore({5: [1]})
        result = await make_pipeline(store, roles).run(5, [2], ADMIN)
        assert not result.success
        assert result.code == PermissionErrorCode.ADMIN_REQUIRED
        assert result.failed_stage == PipelineStage.AUTHORIZING
        assert store.rows[5] == [1]

    async def test_role_lookup_failure_is_admin_required(self):
        result = await make_pipeline(roles=FakeRoles(fail=True)).run(5, [2], ADMIN)
        assert result.code == PermissionErrorCode.ADMIN_REQUIRED
        assert "role service unavailable" in result.error

    async def test_invalid_products_reported(self):
        result = await make_pipeline().run(5, [1, -3, "x"], ADMIN)
        assert result.code == PermissionErrorCode.INVALID_PRODUCT
        assert result.invalid_products == [-3, "x"]

    async def test_delete_failure_returns_store_message_verbatim(self):
        store = FakeStore({5: [1]})
        store.fail_delete = "permission denied for table state_allowed_products"
        pipeline = make_pipeline(store)
        result = await pipeline.run(5, [2], ADMIN)
        assert result.code == PermissionErrorCode.DELETE_FAILED
        assert result.error == "permission denied for table state_allowed_products"
        assert result.assignments_cleared is False
        assert store.insert_calls == 0
        assert pipeline.transitions[-1] == PipelineStage.FAILED

    async def test_insert_failure_flags_cleared_state(self):
        store = FakeStore({5: [1, 2]})
        store.fail_insert = "connection reset"
        result = await make_pipeline(store).run(5, [3], ADMIN)
        assert result.code == PermissionErrorCode.INSERT_FAILED
        assert result.failed_stage == PipelineStage.INSERTING
        assert result.assignments_cleared is True
        assert result.deleted_count == 2
        assert store.rows.get(5, []) == []

    async def test_verify_extra_id_is_mismatch(self):
        store = FakeStore()
        store.extra_on_read = [99]
        result = await make_pipeline(store).run(5, [1, 2], ADMIN)
        assert not result.success
        assert result.code == PermissionErrorCode.VERIFICATION_MISMATCH
        assert result.requested_ids == [1, 2]
        assert sorted(result.verified_ids) == [1, 2, 99]

    async def test_verify_read_failure(self):
        store = FakeStore()
        store.fail_read = "timeout"
        result = await make_pipeline(store).run(5, [1], ADMIN)
        assert result.code == PermissionErrorCode.DATA_FETCH_ERROR
        assert result.failed_stage == PipelineStage.VERIFYING


@pytest.mark.unit
@pytest.mark.asyncio
class TestPipelineAudit:
    async def test_audit_called_for_every_outcome(self):
        seen: list[SaveResult] = []

        async def audit(result, caller):
            seen.append(result)

        await make_pipeline(audit=audit).run(5, [1], ADMIN)
        await make_pipeline(audit=audit).run(5, [0], ADMIN)
        assert [r.success for r in seen] == [True, False]

    async def test_audit_failure_does_not_change_result(self):
        async def audit(result, caller):
            raise RuntimeError("audit table missing")

        pipeline = make_pipeline(audit=audit)
        result = await pipeline.run(5, [1], ADMIN)
        assert result.success
        assert pipeline.trace.entries()[-1].message == "Failed to record audit entry"
