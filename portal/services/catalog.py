"""
Product Catalog Pipeline.

Pure filter -> sort -> page transform over the in-memory product
collection, plus :class:`CatalogController`, the stateful holder used by
the product list (debounced filters, sort, page window).

Usage::

    view = build_view(products, FilterCriteria(tipo="DEPOSITO"),
                      SortSpec(column="saldo", direction="desc"),
                      PageWindow(page_index=0, page_size=10))
    view.items, view.total_count
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Sequence, Union

from portal.logger import StructuredLogger
from portal.models.catalog_models import CatalogView, FilterCriteria, PageWindow, SortSpec
from portal.models.enums import SortColumn, SortDirection
from portal.models.product import Product
from portal.services.debounce import Debouncer
from portal.utils.dates import as_utc

ViewListener = Callable[[CatalogView], None]


# ---------------------------------------------------------------------------
# Sort keys (wire names and attribute names are both accepted)
# ---------------------------------------------------------------------------

def _date_key(product: Product) -> datetime:
    return as_utc(product.contracted_at)


_SORT_KEYS: dict[str, Callable[[Product], Any]] = {
    SortColumn.NAME: lambda p: p.name,
    "name": lambda p: p.name,
    SortColumn.TYPE: lambda p: p.type.value,
    "type": lambda p: p.type.value,
    SortColumn.STATUS: lambda p: p.status.value,
    "status": lambda p: p.status.value,
    SortColumn.BALANCE: lambda p: p.balance,
    "balance": lambda p: p.balance,
    SortColumn.CONTRACTED_AT: _date_key,
    "contracted_at": _date_key,
}

SORTABLE_COLUMNS: frozenset[str] = frozenset(_SORT_KEYS)


# ---------------------------------------------------------------------------
# Pure pipeline
# ---------------------------------------------------------------------------

def apply_filters(products: Iterable[Product], criteria: FilterCriteria) -> list[Product]:
    """Return the products satisfying *every* present criterion, in input order."""
    return [p for p in products if matches(p, criteria)]


def matches(product: Product, criteria: FilterCriteria) -> bool:
    """Conjunctive predicate behind :func:`apply_filters`."""
    if criteria.type is not None and product.type != criteria.type:
        return False
    if criteria.status is not None and product.status != criteria.status:
        return False

    contracted = as_utc(product.contracted_at)
    if criteria.date_from is not None and contracted < as_utc(criteria.date_from):
        return False
    if criteria.date_to is not None and contracted > as_utc(criteria.date_to):
        return False

    if criteria.search_text:
        needle = criteria.search_text.lower()
        haystacks = (product.name, product.product_number, product.description)
        return any(text is not None and needle in text.lower() for text in haystacks)

    return True


def sort_products(products: Sequence[Product], sort: Optional[SortSpec]) -> list[Product]:
    """Order *products* according to *sort*.

    No column, no direction or an unrecognised column keep the input
    order.  Descending is the exact reverse of the stable ascending order,
    so products with equal keys appear in reverse input order.
    """
    items = list(products)
    if sort is None or not sort.column or sort.direction == SortDirection.NONE:
        return items

    key = _SORT_KEYS.get(sort.column)
    if key is None:
        return items

    ascending = sorted(items, key=key)
    if sort.direction == SortDirection.DESC:
        return list(reversed(ascending))
    return ascending


def paginate(items: Sequence[Product], window: Optional[PageWindow]) -> list[Product]:
    """Slice one page out of *items*; out-of-range windows give ``[]``."""
    if window is None:
        return list(items)
    return list(items[window.start:window.end])


def build_view(
    products: Sequence[Product],
    filters: Optional[FilterCriteria] = None,
    sort: Optional[SortSpec] = None,
    page: Optional[PageWindow] = None,
) -> CatalogView:
    """Run filter -> sort -> page.  ``total_count`` counts the filtered set."""
    filtered = apply_filters(products, filters) if filters is not None else list(products)
    ordered = sort_products(filtered, sort)
    return CatalogView(items=paginate(ordered, page), total_count=len(ordered))


# ---------------------------------------------------------------------------
# Stateful controller
# ---------------------------------------------------------------------------

class CatalogController:
    """Holds the catalog state shown by the product list.

    Filter edits are debounced; when the quiet period elapses the new
    criteria take effect and the page index returns to 0.  Sort and page
    changes apply immediately.

    Parameters
    ----------
    logger:
        Structured logger.
    debounce_s:
        Quiescence window for filter edits.
    page_size:
        Initial page size.
    """

    def __init__(
        self,
        logger: StructuredLogger,
        debounce_s: float = 0.3,
        page_size: int = 10,
    ) -> None:
        self._logger: StructuredLogger = logger
        self._products: list[Product] = []
        self._filters: FilterCriteria = FilterCriteria()
        self._pending_filters: Optional[FilterCriteria] = None
        self._sort: SortSpec = SortSpec()
        self._page: PageWindow = PageWindow(page_size=page_size)
        self._listeners: list[ViewListener] = []
        self._debouncer: Debouncer = Debouncer(debounce_s, self._apply_pending, logger)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def products(self) -> list[Product]:
        return list(self._products)

    @property
    def filters(self) -> FilterCriteria:
        return self._filters

    @property
    def sort(self) -> SortSpec:
        return self._sort

    @property
    def page(self) -> PageWindow:
        return self._page

    @property
    def has_pending_filters(self) -> bool:
        return self._debouncer.pending

    def view(self) -> CatalogView:
        return build_view(self._products, self._filters, self._sort, self._page)

    def subscribe(self, listener: ViewListener) -> Callable[[], None]:
        """Call *listener* with the new view after every effective change."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_products(self, products: Iterable[Product]) -> None:
        self._products = list(products)
        self._publish()

    def set_filters(self, criteria: Union[FilterCriteria, dict[str, Any]]) -> None:
        """Queue new criteria; they apply once input has been quiet."""
        if isinstance(criteria, dict):
            criteria = FilterCriteria.model_validate(criteria)
        self._pending_filters = criteria
        self._debouncer.trigger()

    def clear_filters(self) -> None:
        """Drop every criterion immediately."""
        self._debouncer.cancel()
        self._pending_filters = None
        self._filters = FilterCriteria()
        self._page = self._page.model_copy(update={"page_index": 0})
        self._publish()

    def flush(self) -> bool:
        """Apply queued criteria now.  Returns ``True`` if any were queued."""
        return self._debouncer.flush()

    def set_sort(
        self,
        column: Optional[str],
        direction: Union[SortDirection, str, None] = SortDirection.ASC,
    ) -> None:
        self._sort = SortSpec(column=column, direction=SortDirection(direction or ""))
        self._publish()

    def set_page(self, page_index: int, page_size: Optional[int] = None) -> None:
        self._page = PageWindow(
            page_index=page_index,
            page_size=page_size if page_size is not None else self._page.page_size,
        )
        self._publish()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _apply_pending(self) -> None:
        if self._pending_filters is None:
            return
        self._filters = self._pending_filters
        self._pending_filters = None
        self._page = self._page.model_copy(update={"page_index": 0})
        self._logger.debug("Catalog filters applied: %s", self._filters.model_dump(exclude_none=True))
        self._publish()

    def _publish(self) -> None:
        if not self._listeners:
            return
        current = self.view()
        for listener in list(self._listeners):
            try:
                listener(current)
            except Exception:
                self._logger.error("Catalog listener raised.", exc_info=True)
