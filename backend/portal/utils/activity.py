"""Lightweight helper for recording activity log entries.

Usage:
    await log_activity(
        db, caller, action="permissions_replaced", entity_type="state",
        entity_id=str(state_id), summary="Set 12 allowed products",
    )

The row is added to the current session and committed with the
enclosing transaction; no extra flush is performed.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from portal.auth.elevation import CallerContext
from portal.models.activity_log import ActivityLog


async def log_activity(
    db: AsyncSession,
    caller: CallerContext,
    *,
    action: str,
    entity_type: str,
    entity_id: str | None = None,
    summary: str | None = None,
    details: dict | None = None,
) -> None:
    """Append an activity log entry to the current DB session."""
    entry = ActivityLog(
        user_id=caller.user_id,
        elevation=caller.grant.kind.value if caller.grant else "none",
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        summary=summary,
        details=details,
    )
    db.add(entry)
