"""State and catalog read routes.

Endpoints:
    GET /api/states                       States, optional name search
    GET /api/states/lookup?name=          One state by exact name, with its product count
    GET /api/states/{state_id}/products   Products allowed in a state
    GET /api/catalog/products             Filtered + sorted product catalog
    GET /api/catalog/brands               Brands
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from portal.auth.deps import require_authenticated
from portal.auth.elevation import CallerContext
from portal.config import settings
from portal.database import get_db
from portal.middleware.exceptions import ResourceNotFoundError
from portal.schemas.permissions import (
    BrandOut,
    ProductOut,
    SortKey,
    StateOut,
    StateSummaryOut,
)
from portal.services.catalog_view import filter_products, filter_states, sort_products
from portal.services.permissions_store import PermissionsRepository
from portal.utils.cache import cached

states_router = APIRouter()
catalog_router = APIRouter()


@states_router.get("/", response_model=list[StateOut])
@cached(ttl=settings.states_cache_ttl, prefix="states")
async def list_states(
    search: str = Query("", max_length=100),
    db: AsyncSession = Depends(get_db),
    _caller: CallerContext = Depends(require_authenticated),
):
    states = await PermissionsRepository(db).list_states()
    return [StateOut.model_validate(s) for s in filter_states(states, search)]


@states_router.get("/lookup", response_model=StateSummaryOut)
async def lookup_state(
    name: str = Query(..., min_length=1, max_length=100),
    db: AsyncSession = Depends(get_db),
    _caller: CallerContext = Depends(require_authenticated),
):
    """Resolve a state by its exact name, as the map view clicks do."""
    repo = PermissionsRepository(db)
    state = await repo.get_state_by_name(name)
    if state is None:
        raise ResourceNotFoundError("State", name)
    return StateSummaryOut(
        id=state.id,
        name=state.name,
        product_count=await repo.count_assignments_for_state(state.id),
    )


@states_router.get("/{state_id}/products", response_model=list[ProductOut])
async def list_state_products(
    state_id: int,
    db: AsyncSession = Depends(get_db),
    _caller: CallerContext = Depends(require_authenticated),
):
    repo = PermissionsRepository(db)
    if await repo.get_state(state_id) is None:
        raise ResourceNotFoundError("State", str(state_id))
    return [ProductOut.model_validate(p) for p in await repo.get_state_products(state_id)]


@catalog_router.get("/products", response_model=list[ProductOut])
@cached(ttl=settings.catalog_cache_ttl, prefix="catalog")
async def list_products(
    brand: str = Query("all"),
    search: str = Query("", max_length=200),
    sort: SortKey = Query("name-asc"),
    db: AsyncSession = Depends(get_db),
    _caller: CallerContext = Depends(require_authenticated),
):
    products = await PermissionsRepository(db).list_products()
    try:
        visible = sort_products(filter_products(products, brand, search), sort)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return [ProductOut.model_validate(p) for p in visible]


@catalog_router.get("/brands", response_model=list[BrandOut])
@cached(ttl=settings.catalog_cache_ttl, prefix="catalog")
async def list_brands(
    db: AsyncSession = Depends(get_db),
    _caller: CallerContext = Depends(require_authenticated),
):
    return [BrandOut.model_validate(b) for b in await PermissionsRepository(db).list_brands()]
