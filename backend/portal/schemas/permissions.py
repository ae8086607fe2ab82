"""Pydantic schemas for state permissions, catalog and editor endpoints."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class StateOut(BaseModel):
    id: int
    name: str

    model_config = {"from_attributes": True}


class StateSummaryOut(StateOut):
    product_count: int


class BrandOut(BaseModel):
    id: int
    name: str
    logo_url: str | None = None

    model_config = {"from_attributes": True}


class ProductOut(BaseModel):
    id: int
    name: str
    brand_id: int | None = None
    brand: BrandOut | None = None

    model_config = {"from_attributes": True}


class AssignmentOut(BaseModel):
    id: int
    state_id: int
    product_id: int | None

    model_config = {"from_attributes": True}


class StateProductsOut(BaseModel):
    state_id: int
    products: list[ProductOut]


class ReplaceAssignmentsRequest(BaseModel):
    # Element checks belong to the Validation Gate,
    # which reports exactly which ids were rejected.
    product_ids: list[Any] = Field(default_factory=list)


class NoticeOut(BaseModel):
    level: str
    message: str
    description: str | None = None
    created_at: datetime


class SaveResultOut(BaseModel):
    success: bool
    state_id: int | None
    requested_ids: list[int] = []
    failed_stage: str | None = None
    code: str | None = None
    error: str | None = None
    deleted_count: int | None = None
    inserted_count: int | None = None
    verified_ids: list[int] | None = None
    invalid_products: list[Any] = []
    assignments_cleared: bool = False
    grant: dict | None = None


class DebugLogEntryOut(BaseModel):
    level: Literal["info", "success", "warning", "error"]
    message: str
    data: dict | None = None
    stage: str | None = None
    status: str | None = None
    timestamp: datetime


class ReplaceAssignmentsResponse(BaseModel):
    result: SaveResultOut
    assignments: list[AssignmentOut]
    notices: list[NoticeOut] = []
    # Populated only when the debug panel is on
    trace: list[DebugLogEntryOut] = []


class DebugLogOut(BaseModel):
    visible: bool
    capacity: int
    dropped: int
    entries: list[DebugLogEntryOut]


class DebugToggle(BaseModel):
    visible: bool


class GuestTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    guest_id: str


# ── Editor sessions ─────────────────────────────────────────

SortKey = Literal["name-asc", "name-desc", "brand"]


class EditorOpenRequest(BaseModel):
    state_id: int | None = None
    state_name: str | None = None


class EditorQueryUpdate(BaseModel):
    brand: str | int | None = None
    search: str | None = None
    sort: SortKey | None = None


class SelectionAction(BaseModel):
    action: Literal["toggle", "select-visible", "clear-visible", "clear-all", "set"]
    product_id: int | None = None
    product_ids: list[int] | None = None


class EditorSnapshot(BaseModel):
    session_id: str
    state: StateOut | None
    is_open: bool
    is_saving: bool
    has_changes: bool
    can_save: bool
    stale: bool
    error: str | None = None
    persisted_ids: list[int]
    pending_ids: list[int]
    brand: str
    search: str
    sort: SortKey
    visible_products: list[ProductOut]
    notices: list[NoticeOut] = []
    last_result: SaveResultOut | None = None
