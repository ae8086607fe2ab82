"""Editor session routes.

Endpoints:
    POST   /api/editor/sessions                  Open a session (optionally on a state)
    GET    /api/editor/sessions/{sid}            Snapshot
    POST   /api/editor/sessions/{sid}/open       Open (or switch to) a state
    POST   /api/editor/sessions/{sid}/retry      Reload after a load failure
    PATCH  /api/editor/sessions/{sid}/query      Brand / search / sort
    POST   /api/editor/sessions/{sid}/selection  Selection actions
    POST   /api/editor/sessions/{sid}/save       Save the pending selection
    DELETE /api/editor/sessions/{sid}            Close (409 while saving)
    GET    /api/editor/sessions/{sid}/debug      Trace panel
    PATCH  /api/editor/sessions/{sid}/debug      Show / hide the trace panel
"""

from fastapi import APIRouter, Depends, HTTPException, status

from portal.auth.deps import get_caller_context, require_authenticated
from portal.auth.elevation import CallerContext
from portal.middleware.exceptions import ConflictError, DataFetchError, ResourceNotFoundError
from portal.schemas.permissions import (
    DebugLogOut,
    DebugToggle,
    EditorOpenRequest,
    EditorQueryUpdate,
    EditorSnapshot,
    ProductOut,
    SelectionAction,
    StateOut,
)
from portal.services.editor_sessions import EditorRegistry, get_editor_registry
from portal.services.permissions_editor import PermissionsEditor

router = APIRouter()


def _snapshot(session_id: str, editor: PermissionsEditor) -> EditorSnapshot:
    state = editor.selected_state if editor.is_open else None
    selection = editor.selection
    return EditorSnapshot(
        session_id=session_id,
        state=StateOut.model_validate(state) if state is not None else None,
        is_open=editor.is_open,
        is_saving=editor.is_saving,
        has_changes=editor.has_changes,
        can_save=editor.can_save,
        stale=editor.stale,
        error=editor.error,
        persisted_ids=sorted(selection.persisted) if selection else [],
        pending_ids=selection.sorted_pending() if selection else [],
        brand=str(editor.view.brand),
        search=editor.view.search,
        sort=editor.view.sort,
        visible_products=[ProductOut.model_validate(p) for p in editor.view.visible],
        notices=[n.as_dict() for n in editor.notices.drain()],
        last_result=editor.last_result.as_dict() if editor.last_result else None,
    )


def _open_requested(editor: PermissionsEditor, body: EditorOpenRequest) -> None:
    if body.state_id is not None:
        opened = editor.open_state(body.state_id)
    else:
        opened = editor.open_state_by_name(body.state_name)
    if not opened:
        raise ResourceNotFoundError(
            "State", str(body.state_id if body.state_id is not None else body.state_name)
        )


@router.post("/sessions", response_model=EditorSnapshot, status_code=status.HTTP_201_CREATED)
async def open_session(
    body: EditorOpenRequest,
    caller: CallerContext = Depends(require_authenticated),
    registry: EditorRegistry = Depends(get_editor_registry),
):
    session_id, editor = await registry.create(caller)
    loaded = await editor.load()

    if loaded and (body.state_id is not None or body.state_name):
        try:
            _open_requested(editor, body)
        except ResourceNotFoundError:
            await registry.remove(session_id)
            raise

    return _snapshot(session_id, editor)


@router.post("/sessions/{session_id}/open", response_model=EditorSnapshot)
async def open_state(
    session_id: str,
    body: EditorOpenRequest,
    caller: CallerContext = Depends(require_authenticated),
    registry: EditorRegistry = Depends(get_editor_registry),
):
    editor = await registry.get(session_id, caller)
    if body.state_id is None and not body.state_name:
        raise HTTPException(status_code=400, detail="state_id or state_name is required")
    if editor.is_saving:
        raise ConflictError("Cannot switch states while a save is in progress")
    if editor.error is not None and not await editor.retry():
        raise DataFetchError(editor.error)
    _open_requested(editor, body)
    return _snapshot(session_id, editor)


@router.get("/sessions/{session_id}", response_model=EditorSnapshot)
async def get_session(
    session_id: str,
    caller: CallerContext = Depends(require_authenticated),
    registry: EditorRegistry = Depends(get_editor_registry),
):
    return _snapshot(session_id, await registry.get(session_id, caller))


@router.post("/sessions/{session_id}/retry", response_model=EditorSnapshot)
async def retry_session(
    session_id: str,
    caller: CallerContext = Depends(require_authenticated),
    registry: EditorRegistry = Depends(get_editor_registry),
):
    editor = await registry.get(session_id, caller)
    await editor.retry()
    return _snapshot(session_id, editor)


@router.patch("/sessions/{session_id}/query", response_model=EditorSnapshot)
async def update_query(
    session_id: str,
    body: EditorQueryUpdate,
    caller: CallerContext = Depends(require_authenticated),
    registry: EditorRegistry = Depends(get_editor_registry),
):
    editor = await registry.get(session_id, caller)
    try:
        editor.update_query(brand=body.brand, search=body.search, sort=body.sort)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _snapshot(session_id, editor)


@router.post("/sessions/{session_id}/selection", response_model=EditorSnapshot)
async def change_selection(
    session_id: str,
    body: SelectionAction,
    caller: CallerContext = Depends(require_authenticated),
    registry: EditorRegistry = Depends(get_editor_registry),
):
    editor = await registry.get(session_id, caller)
    if not editor.is_open:
        raise HTTPException(status_code=400, detail="No state is being edited")

    if body.action == "toggle":
        if body.product_id is None:
            raise HTTPException(status_code=400, detail="product_id is required for toggle")
        editor.toggle(body.product_id)
    elif body.action == "set":
        editor.set_selection(body.product_ids or [])
    elif body.action == "select-visible":
        editor.select_visible()
    elif body.action == "clear-visible":
        editor.clear_visible()
    else:
        editor.clear_all()
    return _snapshot(session_id, editor)


@router.post("/sessions/{session_id}/save", response_model=EditorSnapshot)
async def save_session(
    session_id: str,
    caller: CallerContext = Depends(get_caller_context),
    registry: EditorRegistry = Depends(get_editor_registry),
):
    if not caller.is_authenticated:
        raise HTTPException(status_code=401, detail="Authentication required")
    editor = await registry.get(session_id, caller)
    if editor.is_saving:
        raise ConflictError("A save is already in progress")
    await editor.save(caller)
    return _snapshot(session_id, editor)


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_session(
    session_id: str,
    caller: CallerContext = Depends(require_authenticated),
    registry: EditorRegistry = Depends(get_editor_registry),
):
    editor = await registry.get(session_id, caller)
    if not editor.close():
        raise ConflictError("Cannot close while a save is in progress")
    await registry.remove(session_id)


@router.get("/sessions/{session_id}/debug", response_model=DebugLogOut)
async def get_debug_log(
    session_id: str,
    caller: CallerContext = Depends(require_authenticated),
    registry: EditorRegistry = Depends(get_editor_registry),
):
    trace = (await registry.get(session_id, caller)).trace
    return DebugLogOut(
        visible=trace.visible,
        capacity=trace.capacity,
        dropped=trace.dropped,
        entries=[e.as_dict() for e in trace.visible_entries()],
    )


@router.patch("/sessions/{session_id}/debug", response_model=DebugLogOut)
async def toggle_debug_log(
    session_id: str,
    body: DebugToggle,
    caller: CallerContext = Depends(require_authenticated),
    registry: EditorRegistry = Depends(get_editor_registry),
):
    trace = (await registry.get(session_id, caller)).trace
    trace.visible = body.visible
    return DebugLogOut(
        visible=trace.visible,
        capacity=trace.capacity,
        dropped=trace.dropped,
        entries=[e.as_dict() for e in trace.visible_entries()],
    )
