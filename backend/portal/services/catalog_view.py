"""Selection dialog view logic: filter, sort, and pending selection.

Pure functions over any product-like object exposing `id`, `name` and an
optional `brand` with `id` and `name` (ORM rows and schemas both work).

Ordering rules:
  name-asc   case-insensitive name, ascending
  name-desc  case-insensitive name, descending; equal names keep their
             original relative order
  brand      brand name ascending, then name ascending; products without
             a brand sort after every branded product

Bulk selection operations act on the *visible* products only, so a
filtered view never discards selections outside the filter.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

SORT_KEYS = ("name-asc", "name-desc", "brand")
ALL_BRANDS = "all"


def _name_key(product: Any) -> str:
    return (product.name or "").casefold()


def _brand_of(product: Any):
    return getattr(product, "brand", None)


def _parse_brand_filter(brand_filter: str | int | None) -> int | None:
    if brand_filter is None:
        return None
    if isinstance(brand_filter, int) and not isinstance(brand_filter, bool):
        return brand_filter
    value = str(brand_filter).strip()
    if value == "" or value == ALL_BRANDS:
        return None
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Invalid brand filter: {brand_filter!r}") from None


def filter_products(
    products: Iterable[Any],
    brand_filter: str | int | None = ALL_BRANDS,
    search: str = "",
) -> list[Any]:
    query = (search or "").casefold()
    brand_id = _parse_brand_filter(brand_filter)

    def matches(product: Any) -> bool:
        name_match = query in (product.name or "").casefold()
        brand = _brand_of(product)
        brand_match = brand_id is None or (brand is not None and brand.id == brand_id)
        return name_match and brand_match

    return [p for p in products if matches(p)]


def sort_products(products: Iterable[Any], sort_key: str = "name-asc") -> list[Any]:
    products = list(products)
    if sort_key == "name-asc":
        return sorted(products, key=_name_key)
    if sort_key == "name-desc":
        # reverse=True keeps equal keys in original order
        return sorted(products, key=_name_key, reverse=True)
    if sort_key == "brand":
        def brand_key(product):
            brand = _brand_of(product)
            if brand is None:
                return (1, "", _name_key(product))
            return (0, (brand.name or "").casefold(), _name_key(product))

        return sorted(products, key=brand_key)
    raise ValueError(f"Unknown sort key: {sort_key!r}")


def filter_states(states: Iterable[Any], query: str = "") -> list[Any]:
    """List-view state search: case-insensitive substring on name."""
    needle = (query or "").casefold()
    return [s for s in states if needle in s.name.casefold()]


@dataclass
class ProductView:
    """Catalog plus the dialog's current filter/sort controls."""

    products: Sequence[Any] = ()
    brand: str = ALL_BRANDS
    search: str = ""
    sort: str = "name-asc"

    def update(self, brand=None, search=None, sort=None) -> None:
        if brand is not None:
            _parse_brand_filter(brand)
            self.brand = str(brand)
        if search is not None:
            self.search = search
        if sort is not None:
            if sort not in SORT_KEYS:
                raise ValueError(f"Unknown sort key: {sort!r}")
            self.sort = sort

    @property
    def visible(self) -> list[Any]:
        return sort_products(filter_products(self.products, self.brand, self.search), self.sort)

    @property
    def visible_ids(self) -> list[int]:
        return [p.id for p in self.visible]


@dataclass
class SelectionState:
    """Pending selection for one editing session, diffed against persisted."""

    persisted: frozenset[int] = frozenset()
    pending: set[int] = field(default_factory=set)

    @classmethod
    def start(cls, persisted: Iterable[int]) -> "SelectionState":
        persisted = frozenset(persisted)
        return cls(persisted=persisted, pending=set(persisted))

    @property
    def has_changes(self) -> bool:
        return set(self.pending) != set(self.persisted)

    def toggle(self, product_id: int) -> None:
        if product_id in self.pending:
            self.pending.discard(product_id)
        else:
            self.pending.add(product_id)

    def set(self, product_ids: Iterable[int]) -> None:
        self.pending = set(product_ids)

    def select_visible(self, visible_ids: Iterable[int]) -> None:
        self.pending |= set(visible_ids)

    def clear_visible(self, visible_ids: Iterable[int]) -> None:
        self.pending -= set(visible_ids)

    def clear_all(self) -> None:
        self.pending = set()

    def mark_persisted(self) -> None:
        self.persisted = frozenset(self.pending)

    def sorted_pending(self) -> list[int]:
        return sorted(self.pending)


def can_save(has_changes: bool, is_saving: bool) -> bool:
    return has_changes and not is_saving


def can_close(is_saving: bool) -> bool:
    return not is_saving
