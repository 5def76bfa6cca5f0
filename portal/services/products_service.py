"""
Financial Products Service.

Loads the user's contracted products and their movements from the REST
backend, contracts new products, and computes the dashboard summary.

``ApiError`` from the client is propagated unchanged, and bodies that do
not match the models are raised as ``ApiError`` as well; the caller
decides what to display.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional

from portal.api_client import ApiClient
from portal.logger import StructuredLogger
from portal.models.enums import ProductStatus, ProductType
from portal.models.product import (
    FinancialSummary,
    Movement,
    NewProduct,
    Product,
    TypeDistribution,
)
from portal.services.base_service import BaseService
from portal.services.catalog import CatalogController
from portal.utils.dates import add_months, as_utc, utc_now


# Product-number prefixes per product type.
_NUMBER_PREFIXES: dict[ProductType, str] = {
    ProductType.ACCOUNT: "ES79",
    ProductType.DEPOSIT: "DP",
    ProductType.LOAN: "PR",
    ProductType.CARD: "4532",
}


def generate_product_number(product_type: ProductType, now: Optional[datetime] = None) -> str:
    """Build a display number for a freshly contracted product.

    The stamp is the last six digits of the epoch milliseconds.

    Examples
    --------
    ``ES79 2100 0418 123456 0001`` for an account,
    ``DP-2025-123456`` for a deposit.
    """
    now = now or utc_now()
    stamp = str(int(now.timestamp() * 1000))[-6:]
    prefix = _NUMBER_PREFIXES[product_type]
    if product_type == ProductType.ACCOUNT:
        return f"{prefix} 2100 0418 {stamp} 0001"
    return f"{prefix}-{now.year}-{stamp}"


class ProductsService(BaseService):
    """Product catalog, movements and dashboard figures.

    Parameters
    ----------
    api:
        REST client.
    logger:
        Structured logger.
    catalog:
        Optional controller that receives every reloaded collection.
    upcoming_days:
        Horizon of the "upcoming expirations" dashboard list.
    latest_movements_limit:
        Length of the "latest movements" dashboard list.
    """

    def __init__(
        self,
        api: ApiClient,
        logger: StructuredLogger,
        catalog: Optional[CatalogController] = None,
        upcoming_days: int = 30,
        latest_movements_limit: int = 10,
    ) -> None:
        super().__init__(api, logger)
        self._catalog: Optional[CatalogController] = catalog
        self._upcoming_days: int = upcoming_days
        self._latest_limit: int = latest_movements_limit
        self._products: list[Product] = []
        self._loaded: bool = False

    @property
    def products(self) -> list[Product]:
        """The last loaded collection, newest contract first."""
        return list(self._products)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load_products(self) -> list[Product]:
        """Fetch ``GET /productos`` and cache it, newest contract first."""
        body = await self._api.get("/productos")
        products = self._parse_list(Product, body)
        products.sort(key=lambda p: as_utc(p.contracted_at), reverse=True)

        self._products = products
        self._loaded = True
        if self._catalog is not None:
            self._catalog.set_products(products)

        self._logger.info(
            "Loaded %d products.", len(products),
            extra={"event": "PRODUCTS_LOADED", "count": len(products)},
        )
        return list(products)

    async def get_product(self, product_id: str) -> Product:
        """Fetch one product.  A missing product raises ``ApiError`` (404)."""
        body = await self._api.get(f"/productos/{product_id}")
        return self._parse_one(Product, body)

    async def get_movements(self, product_id: str) -> list[Movement]:
        """Movements of *product_id*, newest first."""
        body = await self._api.get("/movimientos", params={"productoId": product_id})
        return self._newest_first(self._parse_list(Movement, body))

    async def get_all_movements(self) -> list[Movement]:
        body = await self._api.get("/movimientos")
        return self._newest_first(self._parse_list(Movement, body))

    # ------------------------------------------------------------------
    # Contracting
    # ------------------------------------------------------------------

    async def create_product(self, new: NewProduct, now: Optional[datetime] = None) -> Product:
        """Contract *new* via ``POST /productos`` and reload the collection."""
        payload = self.build_product_payload(new, now)
        body = await self._api.post("/productos", json=payload)
        created = self._parse_one(Product, body)

        self._logger.info(
            "Product contracted: %s (%s).",
            created.name,
            created.product_number,
            extra={
                "event": "PRODUCT_CREATED",
                "product_id": created.id,
                "product_type": created.type.value,
            },
        )
        await self.load_products()
        return created

    @staticmethod
    def build_product_payload(new: NewProduct, now: Optional[datetime] = None) -> dict[str, Any]:
        """Wire payload for a new product: active, contracted *now*.

        ``fechaVencimiento`` is only set when the wizard supplied a term.
        """
        now = now or utc_now()
        payload: dict[str, Any] = {
            "tipo": new.type.value,
            "nombre": new.name,
            "numeroProducto": generate_product_number(new.type, now),
            "estado": ProductStatus.ACTIVE.value,
            "saldo": new.initial_balance or 0,
            "fechaContratacion": now.isoformat(),
            "moneda": new.currency,
        }
        if new.interest_rate is not None:
            payload["tasaInteres"] = new.interest_rate
        if new.credit_limit is not None:
            payload["limiteCredito"] = new.credit_limit
        if new.term_months:
            payload["fechaVencimiento"] = add_months(now, new.term_months).isoformat()
        return payload

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------

    async def get_financial_summary(self, now: Optional[datetime] = None) -> FinancialSummary:
        """Aggregate the active products and the latest movements.

        Loads the product collection first if it has never been loaded.
        """
        if not self._loaded:
            await self.load_products()
        movements = await self.get_all_movements()
        return self.summarize(self._products, movements, now)

    def summarize(
        self,
        products: list[Product],
        movements: list[Movement],
        now: Optional[datetime] = None,
    ) -> FinancialSummary:
        """Pure aggregation behind :meth:`get_financial_summary`."""
        now = as_utc(now or utc_now())
        horizon = now + timedelta(days=self._upcoming_days)

        active = [p for p in products if p.status == ProductStatus.ACTIVE]
        upcoming = [
            p for p in active
            if p.expires_at is not None and now <= as_utc(p.expires_at) <= horizon
        ]
        distribution = [
            TypeDistribution(
                type=product_type,
                count=sum(1 for p in active if p.type == product_type),
                total_balance=sum(p.balance for p in active if p.type == product_type),
            )
            for product_type in ProductType
        ]

        return FinancialSummary(
            total_balance=sum(p.balance for p in active),
            active_products=len(active),
            upcoming_expirations=upcoming,
            latest_movements=self._newest_first(movements)[: self._latest_limit],
            distribution_by_type=distribution,
        )

    @staticmethod
    def _newest_first(movements: list[Movement]) -> list[Movement]:
        return sorted(movements, key=lambda m: as_utc(m.date), reverse=True)
