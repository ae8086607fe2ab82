"""Editor sessions for the HTTP surface.

Each open admin page gets a `PermissionsEditor` held in an in-process
registry. Sessions belong to the caller who opened them and expire
when idle. The registry is shut down from the FastAPI lifespan so no
poll or refetch timer outlives the application.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Callable, Sequence

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portal.auth.elevation import CallerContext
from portal.config import settings
from portal.database import async_session
from portal.middleware.exceptions import ResourceNotFoundError
from portal.services.notices import NoticeBoard
from portal.services.permissions_editor import PermissionsEditor
from portal.services.permissions_pipeline import SaveResult
from portal.services.permissions_store import PermissionsRepository
from portal.services.trace import TraceLog
from portal.utils.cache import close_redis, invalidate_cache

logger = logging.getLogger("portal.editor")


class SessionPermissionsSource:
    """PermissionsSource that opens a short-lived DB session per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def load_states(self):
        async with self.session_factory() as db:
            return await PermissionsRepository(db).list_states()

    async def load_catalog(self):
        async with self.session_factory() as db:
            repo = PermissionsRepository(db)
            return await repo.list_products(), await repo.list_brands()

    async def load_assignments(self):
        async with self.session_factory() as db:
            return await PermissionsRepository(db).list_all_assignments()

    async def save(
        self,
        state_id: int,
        product_ids: Sequence[int],
        caller: CallerContext,
        trace: TraceLog,
        notices: NoticeBoard,
    ) -> SaveResult:
        async with self.session_factory() as db:
            result = await PermissionsRepository(db).replace_assignments_for_state(
                state_id, product_ids, caller, trace, notices
            )
            # audit row
            await db.commit()
        if result.deleted_count is not None:
            await invalidate_cache("assignments:*")
        return result


def _owner_of(caller: CallerContext) -> str | None:
    if caller.user_id:
        return caller.user_id
    if caller.grant is not None:
        return caller.grant.subject
    return None


@dataclass
class _Session:
    owner: str | None
    editor: PermissionsEditor
    last_used: float


class EditorRegistry:
    """Per-caller editor sessions.

    Sessions idle for longer than `ttl` seconds are evicted, and at most
    `limit` sessions are kept (least recently used go first). Evicted
    editors are closed so their timers stop. A session with a save in
    flight is never evicted.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session,
        *,
        ttl: float | None = None,
        limit: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.ttl = settings.editor_session_ttl_seconds if ttl is None else ttl
        self.limit = settings.editor_session_limit if limit is None else limit
        self.clock = clock
        self._sessions: dict[str, _Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def create(self, caller: CallerContext) -> tuple[str, PermissionsEditor]:
        await self.evict_idle()
        await self._evict_over_limit(self.limit - 1)
        session_id = str(uuid.uuid4())
        editor = PermissionsEditor(SessionPermissionsSource(self.session_factory))
        self._sessions[session_id] = _Session(_owner_of(caller), editor, self.clock())
        logger.info("Opened editor session %s", session_id)
        return session_id, editor

    async def get(self, session_id: str, caller: CallerContext) -> PermissionsEditor:
        await self.evict_idle()
        session = self._sessions.get(session_id)
        if session is None or session.owner != _owner_of(caller):
            raise ResourceNotFoundError("Editor session", session_id)
        session.last_used = self.clock()
        return session.editor

    async def remove(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            await session.editor.aclose()
            logger.info("Closed editor session %s", session_id)

    async def evict_idle(self) -> int:
        now = self.clock()
        expired = [
            sid for sid, s in self._sessions.items()
            if now - s.last_used >= self.ttl and not s.editor.is_saving
        ]
        for sid in expired:
            await self.remove(sid)
        if expired:
            logger.info("Evicted %d idle editor session(s)", len(expired))
        return len(expired)

    async def _evict_over_limit(self, keep: int) -> None:
        if len(self._sessions) <= keep:
            return
        candidates = sorted(
            (s.last_used, sid) for sid, s in self._sessions.items() if not s.editor.is_saving
        )
        for _, sid in candidates[: len(self._sessions) - max(keep, 0)]:
            await self.remove(sid)
            logger.warning("Editor session limit reached; evicted %s", sid)

    async def shutdown(self) -> None:
        editors = [s.editor for s in self._sessions.values()]
        self._sessions.clear()
        await asyncio.gather(*(editor.aclose() for editor in editors))


registry = EditorRegistry()


def get_editor_registry() -> EditorRegistry:
    return registry


@asynccontextmanager
async def lifespan(app: FastAPI):
    """FastAPI lifespan: tear down editor timers and Redis on shutdown."""
    logger.info("State permissions service started")
    try:
        yield
    finally:
        await registry.shutdown()
        await close_redis()
        logger.info("Editor sessions closed")
