"""Tests for the permissions Validation Gate."""

import pytest

from portal.auth.elevation import CallerContext, GrantKind
from portal.middleware.exceptions import PermissionErrorCode
from portal.services.notices import NoticeBoard
from portal.services.trace import LogLevel, TraceLog
from portal.services.validation import (
    is_positive_int,
    validate_permissions,
    validate_permissions_detailed,
)

ADMIN = CallerContext.for_user("admin-1", is_admin=True)
BASIC = CallerContext.for_user("user-1", is_admin=False)
GUEST = CallerContext.for_guest("guest-1")
ANON = CallerContext.anonymous()


@pytest.mark.unit
class TestGateOrder:
    """Checks run in order and stop at the first failure."""

    def test_unauthenticated_rejected_even_if_admin_flag_set(self):
        trace = TraceLog()
        context = CallerContext(is_authenticated=False, is_admin=True)
        outcome = validate_permissions_detailed(1, [1], context, trace)
        assert not outcome
        assert outcome.code == PermissionErrorCode.AUTHENTICATION_REQUIRED

    def test_basic_user_rejected_as_admin_required(self):
        outcome = validate_permissions_detailed(1, [1], BASIC, TraceLog())
        assert outcome.code == PermissionErrorCode.ADMIN_REQUIRED

    def test_auth_checked_before_state(self):
        outcome = validate_permissions_detailed(-5, ["x"], ANON, TraceLog())
        assert outcome.code == PermissionErrorCode.AUTHENTICATION_REQUIRED

    def test_state_checked_before_products(self):
        outcome = validate_permissions_detailed(0, ["x"], ADMIN, TraceLog())
        assert outcome.code == PermissionErrorCode.INVALID_STATE

    def test_admin_accepted(self):
        assert validate_permissions(3, [1, 2], ADMIN, TraceLog()) is True

    def test_guest_override_accepted_without_admin_role(self):
        assert GUEST.is_admin is False
        assert GUEST.grant.kind == GrantKind.GUEST_OVERRIDE
        assert validate_permissions(3, [1], GUEST, TraceLog()) is True

    def test_empty_product_list_is_valid(self):
        assert validate_permissions(3, [], ADMIN, TraceLog()) is True


@pytest.mark.unit
class TestIdentifierChecks:
    @pytest.mark.parametrize("state_id", [0, -1, 1.5, "3", None, True])
    def test_invalid_state_ids(self, state_id):
        outcome = validate_permissions_detailed(state_id, [1], ADMIN, TraceLog())
        assert outcome.code == PermissionErrorCode.INVALID_STATE

    def test_reports_exactly_the_failing_products(self):
        outcome = validate_permissions_detailed(
            1, [1, 0, "7", 4, -2, True, 2.0], ADMIN, TraceLog()
        )
        assert outcome.code == PermissionErrorCode.INVALID_PRODUCT
        assert outcome.invalid_products == [0, "7", -2, True, 2.0]

    def test_bool_is_not_a_positive_int(self):
        assert is_positive_int(1)
        assert not is_positive_int(True)
        assert not is_positive_int(False)


@pytest.mark.unit
class TestGateSideEffects:
    """Every decision writes one trace entry; failures also post a notice."""

    def test_one_trace_entry_on_success(self):
        trace = TraceLog()
        notices = NoticeBoard()
        validate_permissions(1, [1, 2], ADMIN, trace, notices)
        entries = trace.entries()
        assert len(entries) == 1
        assert entries[0].level == LogLevel.SUCCESS
        assert entries[0].stage == "validate"
        assert notices.all() == []

    @pytest.mark.parametrize(
        "state_id,product_ids,context",
        [(1, [1], ANON), (1, [1], BASIC), (-1, [1], ADMIN), (1, [0], ADMIN)],
    )
    def test_one_trace_entry_and_notice_on_failure(self, state_id, product_ids, context):
        trace = TraceLog()
        notices = NoticeBoard()
        assert validate_permissions(state_id, product_ids, context, trace, notices) is False
        assert len(trace) == 1
        assert trace.entries()[0].level == LogLevel.ERROR
        assert len(notices.all()) == 1
        assert notices.all()[0].level == "error"

    def test_trace_records_grant(self):
        trace = TraceLog()
        validate_permissions(1, [1], GUEST, trace)
        data = trace.entries()[0].data
        assert data["grant"]["kind"] == "guest_override"
        assert data["grant"]["subject"] == "guest-1"
