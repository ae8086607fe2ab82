"""State permissions editor: the page-level view-model.

Composes data access, the selection dialog logic, the mutation pipeline
and the trace log into the state the admin page renders:

  * which state is being edited and whether the dialog is open
  * the pending selection versus the persisted one (`has_changes`)
  * whether Save is allowed (`can_save`) and whether Close is (`can_close`)
  * an error panel with manual retry when the store is unreachable

Timers:
  * while the dialog is open, a background poll re-reads assignments every
    `poll_interval` seconds. When the store diverges from the dialog's
    persisted baseline it refreshes (non-forced), moves the baseline and
    raises `stale`; the pending selection is kept. Poll failures are
    traced and ignored.
  * closing the dialog schedules one forced refetch `refetch_delay` seconds
    later to reconcile local state with the store.
  * `last_update_time` marks the most recent local optimistic update;
    non-forced refreshes inside `refetch_suppression` seconds of it are
    skipped so a stale read cannot overwrite the optimistic state.

There is no cancellation of an in-flight save, and at most one save runs
per editor: `save()` is refused while `is_saving`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Protocol, Sequence

from portal.auth.elevation import CallerContext
from portal.config import settings
from portal.middleware.exceptions import PortalException
from portal.services.catalog_view import ProductView, SelectionState, can_close, can_save
from portal.services.notices import NoticeBoard
from portal.services.permissions_pipeline import SaveResult
from portal.services.permissions_store import Assignment
from portal.services.trace import LogLevel, TraceLog

logger = logging.getLogger("portal.editor")


class PermissionsSource(Protocol):
    async def load_states(self) -> list[Any]: ...

    async def load_catalog(self) -> tuple[list[Any], list[Any]]: ...

    async def load_assignments(self) -> list[Assignment]: ...

    async def save(
        self,
        state_id: int,
        product_ids: Sequence[int],
        caller: CallerContext,
        trace: TraceLog,
        notices: NoticeBoard,
    ) -> SaveResult: ...


def _group(assignments: Sequence[Assignment]) -> dict[int, set[int]]:
    grouped: dict[int, set[int]] = {}
    for row in assignments:
        if row.product_id is None:
            continue
        grouped.setdefault(row.state_id, set()).add(row.product_id)
    return grouped


class PermissionsEditor:
    def __init__(
        self,
        source: PermissionsSource,
        *,
        trace: TraceLog | None = None,
        notices: NoticeBoard | None = None,
        refetch_delay: float | None = None,
        poll_interval: float | None = None,
        refetch_suppression: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.trace = trace or TraceLog(
            capacity=settings.trace_log_capacity, visible=settings.permissions_debug
        )
        self.notices = notices or NoticeBoard()
        self.refetch_delay = settings.refetch_delay_seconds if refetch_delay is None else refetch_delay
        self.poll_interval = settings.poll_interval_seconds if poll_interval is None else poll_interval
        self.refetch_suppression = (
            settings.refetch_suppression_seconds if refetch_suppression is None else refetch_suppression
        )
        self.clock = clock

        self.states: list[Any] = []
        self.products: list[Any] = []
        self.brands: list[Any] = []
        self._assigned: dict[int, set[int]] = {}

        self.selected_state: Any | None = None
        self.selection: SelectionState | None = None
        self.view = ProductView()
        self.is_open = False
        self.is_saving = False
        self.stale = False
        self.error: str | None = None
        self.partial_failure_state_id: int | None = None
        self.last_update_time: float | None = None
        self.last_result: SaveResult | None = None

        self._poll_task: asyncio.Task | None = None
        self._refetch_task: asyncio.Task | None = None

    # ── Loading ─────────────────────────────────────────────

    async def load(self) -> bool:
        """Load states, catalog and assignments. Failures go to the error panel."""
        try:
            self.states = await self.source.load_states()
            self.products, self.brands = await self.source.load_catalog()
            self._assigned = _group(await self.source.load_assignments())
        except PortalException as exc:
            self.error = exc.message
            self.trace.log_error("Error loading data", exc)
            self.notices.error("Failed to load state permissions data", exc.message)
            return False
        self.error = None
        self.view.products = self.products
        self.trace.add(
            LogLevel.INFO, "Data loaded",
            {"states": len(self.states), "products": len(self.products)},
        )
        return True

    async def retry(self) -> bool:
        return await self.load()

    async def refresh(self, force: bool = False) -> bool:
        """Re-read assignments. Returns True when local state was updated."""
        if (
            not force
            and self.last_update_time is not None
            and self.clock() - self.last_update_time < self.refetch_suppression
        ):
            self.trace.add(LogLevel.INFO, "Skipping refetch right after local update")
            return False
        try:
            assigned = _group(await self.source.load_assignments())
        except PortalException as exc:
            self.trace.log_error("Failed to refresh state products data", exc)
            self.notices.error("Error refreshing data", exc.message)
            return False

        self._assigned = assigned
        self.stale = False
        if self.selected_state is not None:
            if self.selection is not None:
                self.selection.persisted = frozenset(self.persisted_ids(self.selected_state.id))
            if self.partial_failure_state_id == self.selected_state.id and self.persisted_ids(
                self.selected_state.id
            ):
                self.partial_failure_state_id = None
        self.trace.add(LogLevel.SUCCESS, "State products data refreshed", {"forced": force})
        return True

    # ── Derived data ────────────────────────────────────────

    def persisted_ids(self, state_id: int) -> list[int]:
        return sorted(self._assigned.get(state_id, set()))

    def get_state_products(self, state_id: int) -> list[Any]:
        ids = self._assigned.get(state_id, set())
        return [p for p in self.products if p.id in ids]

    @property
    def has_changes(self) -> bool:
        return self.selection is not None and self.selection.has_changes

    @property
    def can_save(self) -> bool:
        return self.is_open and can_save(self.has_changes, self.is_saving)

    @property
    def can_close(self) -> bool:
        return can_close(self.is_saving)

    # ── Dialog ──────────────────────────────────────────────

    def open_state(self, state_id: int) -> bool:
        state = next((s for s in self.states if s.id == state_id), None)
        if state is None:
            self.notices.error(f'State "{state_id}" not found in database')
            return False
        return self._open(state)

    def open_state_by_name(self, name: str) -> bool:
        state = next((s for s in self.states if s.name == name), None)
        if state is None:
            self.notices.error(f'State "{name}" not found in database')
            return False
        return self._open(state)

    def _open(self, state: Any) -> bool:
        if self.is_saving:
            return False
        self.selected_state = state
        self.selection = SelectionState.start(self.persisted_ids(state.id))
        self.is_open = True
        self.stale = False
        self.trace.add(
            LogLevel.INFO, "Editing state",
            {"state_id": state.id, "product_ids": self.persisted_ids(state.id)},
        )
        self._start_poll()
        return True

    def close(self) -> bool:
        """Close the dialog, discarding the pending selection.

        Refused while a save is in flight.
        """
        if not self.can_close:
            self.trace.add(LogLevel.WARNING, "Close blocked while saving")
            return False
        if not self.is_open:
            return True
        self.is_open = False
        self.selection = None
        self._stop_poll()
        self._schedule_refetch()
        return True

    # ── Selection passthroughs ──────────────────────────────

    def _require_selection(self) -> SelectionState:
        if self.selection is None or not self.is_open:
            raise RuntimeError("No state is being edited")
        return self.selection

    def update_query(self, brand=None, search=None, sort=None) -> None:
        self.view.update(brand=brand, search=search, sort=sort)

    def toggle(self, product_id: int) -> None:
        self._require_selection().toggle(product_id)

    def set_selection(self, product_ids: Sequence[int]) -> None:
        self._require_selection().set(product_ids)

    def select_visible(self) -> None:
        self._require_selection().select_visible(self.view.visible_ids)

    def clear_visible(self) -> None:
        self._require_selection().clear_visible(self.view.visible_ids)

    def clear_all(self) -> None:
        self._require_selection().clear_all()

    # ── Save ────────────────────────────────────────────────

    async def save(self, caller: CallerContext) -> SaveResult | None:
        """Persist the pending selection. Returns None when nothing ran."""
        if not self.is_open or self.selected_state is None or self.selection is None:
            self.notices.error("No state selected")
            return None
        if self.is_saving:
            return None
        if not self.has_changes:
            self.notices.info("No changes to save")
            self.close()
            return None

        state_id = self.selected_state.id
        product_ids = self.selection.sorted_pending()
        self.is_saving = True
        try:
            result = await self.source.save(state_id, product_ids, caller, self.trace, self.notices)
        except PortalException as exc:
            self.trace.log_error("Exception during save", exc, {"state_id": state_id})
            self.notices.error(f"Error saving permissions: {exc.message}")
            return None
        finally:
            self.is_saving = False

        self.last_result = result
        if result.success:
            # Optimistic local update; the delayed refetch reconciles it
            self._assigned[state_id] = set(result.requested_ids)
            self.last_update_time = self.clock()
            self.selection.mark_persisted()
            self.partial_failure_state_id = None
            self.notices.success("State permissions saved successfully")
            self.close()
            return result

        self.notices.error("Failed to save permissions", result.error)
        if result.assignments_cleared:
            self._assigned[state_id] = set()
            self.selection.persisted = frozenset()
            self.partial_failure_state_id = state_id
            if result.deleted_count:
                title = "Save partially applied"
                description = (
                    f"{self.selected_state.name} currently permits no products; "
                    f"{result.deleted_count} previous permission(s) were removed "
                    "before the new list failed to save."
                )
            else:
                title = "Save not applied"
                description = (
                    f"{self.selected_state.name} still permits no products; "
                    "the new list failed to save."
                )
            self.notices.warning(title, description)
        if result.deleted_count is not None:
            # The store changed underneath us; reconcile now.
            self._schedule_refetch()
        return result

    # ── Timers ──────────────────────────────────────────────

    def _start_poll(self) -> None:
        self._stop_poll()
        if self.poll_interval > 0:
            self._poll_task = asyncio.create_task(self._poll_loop())

    def _stop_poll(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None

    async def _poll_loop(self) -> None:
        while self.is_open:
            await asyncio.sleep(self.poll_interval)
            if not self.is_open or self.selected_state is None:
                break
            try:
                store_ids = _group(await self.source.load_assignments()).get(
                    self.selected_state.id, set()
                )
            except Exception as exc:
                self.trace.log_error("Background refresh failed", exc)
                continue
            persisted = set(self.selection.persisted) if self.selection else set()
            if store_ids == persisted:
                continue
            # Not forced: a read right after a local save must not undo it
            if await self.refresh():
                self.stale = True
                self.trace.add(
                    LogLevel.WARNING, "State permissions changed in the store",
                    {"state_id": self.selected_state.id, "store_ids": sorted(store_ids)},
                )

    def _schedule_refetch(self) -> None:
        if self._refetch_task is not None and not self._refetch_task.done():
            self._refetch_task.cancel()
        self._refetch_task = asyncio.create_task(self._delayed_refetch())

    async def _delayed_refetch(self) -> None:
        await asyncio.sleep(self.refetch_delay)
        try:
            await self.refresh(force=True)
        except Exception as exc:
            self.trace.log_error("Delayed refetch failed", exc)

    async def aclose(self) -> None:
        """Cancel all timers (page unmount / app shutdown)."""
        tasks = [t for t in (self._poll_task, self._refetch_task) if t is not None]
        self._poll_task = None
        self._refetch_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
