"""Permissions data access: reads of reference data and assignment rows,
plus the single write entry point.

Reads raise `DataFetchError` on any store failure and are never retried
here; retry policy belongs to the caller. Identifier columns are coerced
to `int` on the way out so callers can rely on integer keys even when a
driver or a raw query hands back string-typed values.

Writes go through `replace_assignments_for_state`, which delegates to the
mutation pipeline. The pipeline's store adapter (`SqlAssignmentStore`)
commits each statement independently, matching the per-request semantics
of the hosted store this service fronts: a failed insert does not roll
back the delete that preceded it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portal.auth.elevation import CallerContext
from portal.middleware.exceptions import DataFetchError
from portal.models.catalog import Brand, Product, State
from portal.models.state_allowed_product import StateAllowedProduct
from portal.models.user_role import AppRole, UserRole
from portal.services.notices import NoticeBoard
from portal.services.permissions_pipeline import (
    PermissionsPipeline,
    SaveResult,
    StoreError,
)
from portal.services.trace import TraceLog
from portal.utils.activity import log_activity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Assignment:
    id: int
    state_id: int
    product_id: int | None


def coerce_id(value: Any) -> int | None:
    """Normalize a key that may arrive as int or numeric string."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid identifier: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValueError(f"Invalid identifier: {value!r}")


def normalize_assignment(row: Any) -> Assignment:
    """Build an Assignment from an ORM object, Row, or mapping."""
    if isinstance(row, dict):
        raw_id, state_id, product_id = row["id"], row["state_id"], row["product_id"]
    else:
        raw_id, state_id, product_id = row.id, row.state_id, row.product_id
    return Assignment(
        id=coerce_id(raw_id),
        state_id=coerce_id(state_id),
        product_id=coerce_id(product_id),
    )


def _store_message(exc: SQLAlchemyError) -> str:
    orig = getattr(exc, "orig", None)
    return str(orig) if orig is not None else str(exc)


# ── Pipeline adapters ───────────────────────────────────────

class SqlAssignmentStore:
    """AssignmentStore backed by `state_allowed_products`."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def delete_for_state(self, state_id: int) -> int:
        try:
            result = await self.db.execute(
                delete(StateAllowedProduct).where(StateAllowedProduct.state_id == state_id)
            )
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise StoreError(f"Failed to update permissions: {_store_message(exc)}") from exc
        return result.rowcount or 0

    async def insert_for_state(self, state_id: int, product_ids: Sequence[int]) -> int:
        rows = [StateAllowedProduct(state_id=state_id, product_id=pid) for pid in product_ids]
        try:
            self.db.add_all(rows)
            await self.db.flush()
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            raise StoreError(f"Failed to save new permissions: {_store_message(exc)}") from exc
        return len(rows)

    async def product_ids_for_state(self, state_id: int) -> list[int]:
        try:
            result = await self.db.execute(
                select(StateAllowedProduct.product_id).where(
                    StateAllowedProduct.state_id == state_id
                )
            )
        except SQLAlchemyError as exc:
            raise StoreError(_store_message(exc)) from exc
        return [coerce_id(pid) for pid in result.scalars().all() if pid is not None]


class SqlRoleResolver:
    """Live role lookup against `user_roles`; missing row means basic."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def is_admin(self, user_id: str) -> bool:
        result = await self.db.execute(
            select(UserRole.role).where(UserRole.user_id == user_id)
        )
        role = result.scalar_one_or_none()
        return role == AppRole.ADMIN


# ── Repository ──────────────────────────────────────────────

class PermissionsRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _fetch(self, what: str, stmt):
        try:
            return await self.db.execute(stmt)
        except SQLAlchemyError as exc:
            logger.error("Error fetching %s: %s", what, exc)
            raise DataFetchError(
                f"Failed to load {what}",
                details={"store_error": _store_message(exc)},
            ) from exc

    async def list_states(self) -> list[State]:
        result = await self._fetch("states", select(State).order_by(State.name))
        return list(result.scalars().all())

    async def get_state(self, state_id: int) -> State | None:
        result = await self._fetch("state", select(State).where(State.id == state_id))
        return result.scalar_one_or_none()

    async def get_state_by_name(self, name: str) -> State | None:
        result = await self._fetch("state", select(State).where(State.name == name))
        return result.scalar_one_or_none()

    async def list_brands(self) -> list[Brand]:
        result = await self._fetch("brands", select(Brand).order_by(Brand.name))
        return list(result.scalars().all())

    async def list_products(self) -> list[Product]:
        result = await self._fetch("products", select(Product).order_by(Product.name))
        return list(result.scalars().all())

    async def list_all_assignments(self) -> list[Assignment]:
        result = await self._fetch(
            "state product permissions",
            select(
                StateAllowedProduct.id,
                StateAllowedProduct.state_id,
                StateAllowedProduct.product_id,
            ).order_by(StateAllowedProduct.id),
        )
        try:
            return [normalize_assignment(row) for row in result.all()]
        except ValueError as exc:
            raise DataFetchError("Failed to load state product permissions", details={"error": str(exc)}) from exc

    async def fetch_assignments_for_state(self, state_id: int) -> list[Assignment]:
        result = await self._fetch(
            "state product permissions",
            select(
                StateAllowedProduct.id,
                StateAllowedProduct.state_id,
                StateAllowedProduct.product_id,
            )
            .where(StateAllowedProduct.state_id == state_id)
            .order_by(StateAllowedProduct.id),
        )
        try:
            return [normalize_assignment(row) for row in result.all()]
        except ValueError as exc:
            raise DataFetchError("Failed to load state product permissions", details={"error": str(exc)}) from exc

    async def count_assignments_for_state(self, state_id: int) -> int:
        result = await self._fetch(
            "state product permissions",
            select(func.count(StateAllowedProduct.id)).where(
                StateAllowedProduct.state_id == state_id
            ),
        )
        return result.scalar() or 0

    async def state_products_map(self) -> dict[int, list[Product]]:
        """Map state id → allowed products, skipping rows whose product is gone."""
        products_by_id = {p.id: p for p in await self.list_products()}
        mapping: dict[int, list[Product]] = {}
        for row in await self.list_all_assignments():
            if row.product_id is None:
                continue
            product = products_by_id.get(row.product_id)
            if product is not None:
                mapping.setdefault(row.state_id, []).append(product)
        return mapping

    async def get_state_products(self, state_id: int) -> list[Product]:
        ids = {
            row.product_id
            for row in await self.fetch_assignments_for_state(state_id)
            if row.product_id is not None
        }
        return [p for p in await self.list_products() if p.id in ids]

    async def replace_assignments_for_state(
        self,
        state_id: int,
        product_ids: Sequence[Any],
        caller: CallerContext,
        trace: TraceLog,
        notices: NoticeBoard | None = None,
    ) -> SaveResult:
        pipeline = PermissionsPipeline(
            store=SqlAssignmentStore(self.db),
            roles=SqlRoleResolver(self.db),
            trace=trace,
            notices=notices,
            audit=self._audit,
        )
        return await pipeline.run(state_id, product_ids, caller)

    async def _audit(self, result: SaveResult, caller: CallerContext) -> None:
        await log_activity(
            self.db,
            caller,
            action="permissions_replaced" if result.success else "permissions_replace_failed",
            entity_type="state",
            entity_id=str(result.state_id),
            summary=(
                f"Set {len(result.requested_ids)} allowed products"
                if result.success
                else f"{result.code.value if result.code else 'Failed'}: {result.error}"
            ),
            details=result.as_dict(),
        )
