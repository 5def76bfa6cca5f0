"""
Dashboard Chart Series.

Turns a ``FinancialSummary`` into the label/value series drawn by the
dashboard: a doughnut of product counts and a bar chart of balances,
both per product type.  Types without active products are left out.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from portal.models.enums import ProductType
from portal.models.product import FinancialSummary

# Plural labels used on the dashboard axes and legends.
TYPE_LABELS: dict[ProductType, str] = {
    ProductType.ACCOUNT: "Cuentas",
    ProductType.DEPOSIT: "Depósitos",
    ProductType.LOAN: "Préstamos",
    ProductType.CARD: "Tarjetas",
}

DISTRIBUTION_TITLE: str = "Distribución de Productos por Tipo"
BALANCE_TITLE: str = "Saldo por Tipo de Producto"


class ChartSeries(BaseModel):
    """One chart's worth of data."""

    title: str
    kind: Literal["doughnut", "bar"]
    series_label: str
    labels: list[str] = Field(default_factory=list)
    values: list[float] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.labels


def type_label(product_type: ProductType) -> str:
    return TYPE_LABELS.get(product_type, str(product_type))


def distribution_chart(summary: FinancialSummary) -> ChartSeries:
    """Number of active products per type."""
    rows = [d for d in summary.distribution_by_type if d.count > 0]
    return ChartSeries(
        title=DISTRIBUTION_TITLE,
        kind="doughnut",
        series_label="Cantidad de Productos",
        labels=[type_label(d.type) for d in rows],
        values=[float(d.count) for d in rows],
    )


def balance_chart(summary: FinancialSummary) -> ChartSeries:
    """Total balance of active products per type."""
    rows = [d for d in summary.distribution_by_type if d.count > 0]
    return ChartSeries(
        title=BALANCE_TITLE,
        kind="bar",
        series_label="Saldo Total (€)",
        labels=[type_label(d.type) for d in rows],
        values=[d.total_balance for d in rows],
    )
