"""State permission assignment routes.

Endpoints:
    GET  /api/state-permissions              All assignment rows
    GET  /api/state-permissions/map          State id to allowed products
    GET  /api/state-permissions/{state_id}   One state's rows
    PUT  /api/state-permissions/{state_id}   Replace a state's product list

The PUT route accepts anonymous and non-admin callers: the
Validation Gate inside the pipeline is the authorization boundary and
must trace every rejection.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from portal.auth.deps import get_caller_context, require_authenticated
from portal.auth.elevation import CallerContext
from portal.config import settings
from portal.database import get_db
from portal.middleware.exceptions import PermissionsOperationError
from portal.schemas.permissions import (
    AssignmentOut,
    ProductOut,
    ReplaceAssignmentsRequest,
    ReplaceAssignmentsResponse,
    StateProductsOut,
)
from portal.services.notices import NoticeBoard
from portal.services.permissions_store import PermissionsRepository
from portal.services.trace import TraceLog
from portal.utils.cache import cached, invalidate_cache

router = APIRouter()


@router.get("/", response_model=list[AssignmentOut])
@cached(ttl=settings.catalog_cache_ttl, prefix="assignments")
async def list_assignments(
    db: AsyncSession = Depends(get_db),
    _caller: CallerContext = Depends(require_authenticated),
):
    rows = await PermissionsRepository(db).list_all_assignments()
    return [AssignmentOut.model_validate(r) for r in rows]


@router.get("/map", response_model=list[StateProductsOut])
async def get_state_products_map(
    db: AsyncSession = Depends(get_db),
    _caller: CallerContext = Depends(require_authenticated),
):
    mapping = await PermissionsRepository(db).state_products_map()
    return [
        StateProductsOut(
            state_id=state_id,
            products=[ProductOut.model_validate(p) for p in products],
        )
        for state_id, products in sorted(mapping.items())
    ]


@router.get("/{state_id}", response_model=list[AssignmentOut])
async def get_state_assignments(
    state_id: int,
    db: AsyncSession = Depends(get_db),
    _caller: CallerContext = Depends(require_authenticated),
):
    rows = await PermissionsRepository(db).fetch_assignments_for_state(state_id)
    return [AssignmentOut.model_validate(r) for r in rows]


@router.put("/{state_id}", response_model=ReplaceAssignmentsResponse)
async def replace_state_assignments(
    state_id: int,
    body: ReplaceAssignmentsRequest,
    debug: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    caller: CallerContext = Depends(get_caller_context),
):
    trace = TraceLog(
        capacity=settings.trace_log_capacity,
        visible=debug or settings.permissions_debug,
    )
    notices = NoticeBoard()
    repo = PermissionsRepository(db)

    result = await repo.replace_assignments_for_state(
        state_id, body.product_ids, caller, trace, notices
    )
    # Persist the audit row even when the save failed
    await db.commit()
    if result.deleted_count is not None:
        await invalidate_cache("assignments:*")

    trace_out = [e.as_dict() for e in trace.visible_entries()]
    notices_out = [n.as_dict() for n in notices.all()]

    if not result.success:
        raise PermissionsOperationError(
            result.code,
            result.error or "Failed to save permissions",
            details={
                "result": result.as_dict(),
                "notices": notices_out,
                "trace": trace_out,
            },
        )

    notices.success("State permissions saved successfully")
    rows = await repo.fetch_assignments_for_state(state_id)
    return ReplaceAssignmentsResponse(
        result=result.as_dict(),
        assignments=[AssignmentOut.model_validate(r) for r in rows],
        notices=[n.as_dict() for n in notices.all()],
        trace=trace_out,
    )
