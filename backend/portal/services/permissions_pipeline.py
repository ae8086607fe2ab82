"""Permissions Mutation Pipeline: replace one state's product assignments.

One invocation walks a strict sequence of stages:

    Idle → Authorizing → Deleting → Inserting → Verifying → Succeeded
                 ↘            ↘           ↘            ↘
                                  Failed(stage, reason)

  Authorizing  re-resolve the caller's role live and re-run the
               Validation Gate (role can change between page load and save)
  Deleting     remove every row for the state; failure aborts and returns
               the store's message verbatim
  Inserting    one row per requested product; skipped for an empty request.
               Failure here happens *after* the delete committed, so the
               state is left with zero products. Reported as InsertFailed
               with `assignments_cleared=True`.
  Verifying    re-read the state's rows; any missing or extra id is a
               VerificationMismatch, even though every write succeeded

Every stage is traced at start and at completion/error. Nothing is retried
here: the caller decides whether to run the whole pipeline again, which is
safe because the pipeline is idempotent for a given request.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Protocol, Sequence

from portal.auth.elevation import CallerContext
from portal.middleware.exceptions import PermissionErrorCode
from portal.services.notices import NoticeBoard
from portal.services.trace import StageStatus, TraceLog
from portal.services.validation import validate_permissions_detailed

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """A write or read against the assignment store failed."""


class AssignmentStore(Protocol):
    async def delete_for_state(self, state_id: int) -> int: ...

    async def insert_for_state(self, state_id: int, product_ids: Sequence[int]) -> int: ...

    async def product_ids_for_state(self, state_id: int) -> list[int]: ...


class RoleResolver(Protocol):
    async def is_admin(self, user_id: str) -> bool: ...


class PipelineStage(str, enum.Enum):
    IDLE = "idle"
    AUTHORIZING = "authorizing"
    DELETING = "deleting"
    INSERTING = "inserting"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class SaveResult:
    success: bool
    state_id: int | None
    requested_ids: list[int] = field(default_factory=list)
    failed_stage: PipelineStage | None = None
    code: PermissionErrorCode | None = None
    error: str | None = None
    deleted_count: int | None = None
    inserted_count: int | None = None
    verified_ids: list[int] | None = None
    invalid_products: list = field(default_factory=list)
    # True only when the delete committed and the insert then failed
    assignments_cleared: bool = False
    grant: dict | None = None

    def as_dict(self) -> dict:
        return {
            "success": self.success,
            "state_id": self.state_id,
            "requested_ids": self.requested_ids,
            "failed_stage": self.failed_stage.value if self.failed_stage else None,
            "code": self.code.value if self.code else None,
            "error": self.error,
            "deleted_count": self.deleted_count,
            "inserted_count": self.inserted_count,
            "verified_ids": self.verified_ids,
            "invalid_products": self.invalid_products,
            "assignments_cleared": self.assignments_cleared,
            "grant": self.grant,
        }


AuditHook = Callable[[SaveResult, CallerContext], Awaitable[None]]


class PermissionsPipeline:
    def __init__(
        self,
        store: AssignmentStore,
        roles: RoleResolver,
        trace: TraceLog,
        notices: NoticeBoard | None = None,
        audit: AuditHook | None = None,
    ):
        self.store = store
        self.roles = roles
        self.trace = trace
        self.notices = notices
        self.audit = audit
        self.stage = PipelineStage.IDLE
        self.transitions: list[PipelineStage] = []

    def _enter(self, stage: PipelineStage) -> None:
        self.stage = stage
        self.transitions.append(stage)

    async def run(
        self,
        state_id: int,
        product_ids: Sequence[int],
        caller: CallerContext,
    ) -> SaveResult:
        self.transitions = []
        self._enter(PipelineStage.IDLE)
        result = await self._run(state_id, list(product_ids), caller)
        self._enter(PipelineStage.SUCCEEDED if result.success else PipelineStage.FAILED)

        if result.success:
            logger.info(
                "State %s permissions replaced with %d products",
                state_id, len(result.requested_ids),
            )
        else:
            logger.warning(
                "State %s permissions save failed at %s: %s",
                state_id,
                result.failed_stage.value if result.failed_stage else "?",
                result.error,
            )

        if self.audit is not None:
            try:
                await self.audit(result, caller)
            except Exception as exc:
                self.trace.log_error("Failed to record audit entry", exc, {"state_id": state_id})
        return result

    async def _run(
        self,
        state_id: int,
        product_ids: list,
        caller: CallerContext,
    ) -> SaveResult:
        # ── Authorize ────────────────────────────────────────────
        self._enter(PipelineStage.AUTHORIZING)
        self.trace.log_stage("authorize", StageStatus.START, {"state_id": state_id})

        live_caller = caller
        if caller.is_authenticated and caller.user_id and not caller.is_guest:
            try:
                live_caller = caller.with_admin(await self.roles.is_admin(caller.user_id))
            except Exception as exc:
                message = f"Failed to verify admin status: {exc}"
                self.trace.log_error(message, exc, {"user_id": caller.user_id})
                self.trace.log_stage("authorize", StageStatus.ERROR, {"reason": message})
                if self.notices is not None:
                    self.notices.error(message)
                return SaveResult(
                    success=False,
                    state_id=state_id,
                    failed_stage=PipelineStage.AUTHORIZING,
                    code=PermissionErrorCode.ADMIN_REQUIRED,
                    error=message,
                )

        outcome = validate_permissions_detailed(
            state_id, product_ids, live_caller, self.trace, self.notices
        )
        grant = live_caller.grant.as_dict() if live_caller.grant else None
        if not outcome.ok:
            self.trace.log_stage(
                "authorize", StageStatus.ERROR,
                {"code": outcome.code.value, "reason": outcome.message},
            )
            return SaveResult(
                success=False,
                state_id=state_id,
                failed_stage=PipelineStage.AUTHORIZING,
                code=outcome.code,
                error=outcome.message,
                invalid_products=outcome.invalid_products,
                grant=grant,
            )
        self.trace.log_stage("authorize", StageStatus.COMPLETE, {"grant": grant})

        requested = list(dict.fromkeys(product_ids))
        result = SaveResult(
            success=False,
            state_id=state_id,
            requested_ids=requested,
            grant=grant,
        )

        # ── Delete existing ──────────────────────────────────────
        self._enter(PipelineStage.DELETING)
        self.trace.log_stage("delete", StageStatus.START, {"state_id": state_id})
        try:
            result.deleted_count = await self.store.delete_for_state(state_id)
        except StoreError as exc:
            self.trace.log_stage("delete", StageStatus.ERROR, {"error": str(exc)})
            result.failed_stage = PipelineStage.DELETING
            result.code = PermissionErrorCode.DELETE_FAILED
            result.error = str(exc)
            return result
        self.trace.log_stage("delete", StageStatus.COMPLETE, {"deleted_count": result.deleted_count})

        # ── Insert requested ─────────────────────────────────────
        self._enter(PipelineStage.INSERTING)
        if not requested:
            self.trace.log_stage(
                "insert", StageStatus.COMPLETE,
                {"inserted_count": 0, "skipped": True},
            )
            result.inserted_count = 0
        else:
            self.trace.log_stage("insert", StageStatus.START, {"product_ids": requested})
            try:
                result.inserted_count = await self.store.insert_for_state(state_id, requested)
            except StoreError as exc:
                self.trace.log_stage(
                    "insert", StageStatus.ERROR,
                    {"error": str(exc), "assignments_cleared": True},
                )
                result.failed_stage = PipelineStage.INSERTING
                result.code = PermissionErrorCode.INSERT_FAILED
                result.error = str(exc)
                result.assignments_cleared = True
                return result
            self.trace.log_stage("insert", StageStatus.COMPLETE, {"inserted_count": result.inserted_count})

        # ── Verify ───────────────────────────────────────────────
        self._enter(PipelineStage.VERIFYING)
        self.trace.log_stage("verify", StageStatus.START, {"state_id": state_id})
        try:
            verified_ids = await self.store.product_ids_for_state(state_id)
        except StoreError as exc:
            self.trace.log_stage("verify", StageStatus.ERROR, {"error": str(exc)})
            result.failed_stage = PipelineStage.VERIFYING
            result.code = PermissionErrorCode.DATA_FETCH_ERROR
            result.error = str(exc)
            return result

        result.verified_ids = verified_ids
        verified_set = set(verified_ids)
        all_saved = all(pid in verified_set for pid in requested)
        extra_items = [pid for pid in verified_ids if pid not in set(requested)]
        verification = {
            "expected_count": len(requested),
            "actual_count": len(verified_ids),
            "all_saved": all_saved,
            "extra_items": extra_items,
        }

        if not all_saved or extra_items:
            verification.update(requested_ids=requested, actual_ids=verified_ids)
            self.trace.log_stage("verify", StageStatus.ERROR, verification)
            result.failed_stage = PipelineStage.VERIFYING
            result.code = PermissionErrorCode.VERIFICATION_MISMATCH
            result.error = "Database state doesn't match requested state"
            return result

        self.trace.log_stage("verify", StageStatus.COMPLETE, verification)
        result.success = True
        return result
