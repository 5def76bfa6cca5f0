"""
Financial Product Models.

Catalog items, their movements, the contracting wizard output and the
dashboard summary.  Field aliases match the REST backend's JSON.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from portal.models.enums import MovementType, ProductStatus, ProductType


class Product(BaseModel):
    """A contracted financial product (account, deposit, loan or card)."""

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str
    type: ProductType = Field(alias="tipo")
    name: str = Field(alias="nombre")
    product_number: str = Field(alias="numeroProducto")
    status: ProductStatus = Field(alias="estado")
    balance: float = Field(alias="saldo")
    contracted_at: datetime = Field(alias="fechaContratacion")
    expires_at: Optional[datetime] = Field(default=None, alias="fechaVencimiento")
    interest_rate: Optional[float] = Field(default=None, alias="tasaInteres")
    credit_limit: Optional[float] = Field(default=None, alias="limiteCredito")
    description: Optional[str] = Field(default=None, alias="descripcion")
    currency: str = Field(alias="moneda")


class Movement(BaseModel):
    """A single movement booked against a product."""

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str
    product_id: str = Field(alias="productoId")
    date: datetime = Field(alias="fecha")
    concept: str = Field(alias="concepto")
    amount: float = Field(alias="monto")
    type: MovementType = Field(alias="tipo")
    resulting_balance: float = Field(alias="saldoResultante")
    reference: Optional[str] = Field(default=None, alias="referencia")


class NewProduct(BaseModel):
    """Output of the contracting wizard, before the backend assigns an id."""

    model_config = ConfigDict(populate_by_name=True)

    type: ProductType = Field(alias="tipo")
    name: str = Field(alias="nombre")
    currency: str = Field(default="EUR", alias="moneda")
    initial_balance: Optional[float] = Field(default=None, alias="saldoInicial")
    credit_limit: Optional[float] = Field(default=None, alias="limiteCredito")
    interest_rate: Optional[float] = Field(default=None, alias="tasaInteres")
    term_months: Optional[int] = Field(default=None, alias="plazoMeses")


class TypeDistribution(BaseModel):
    """Per-type aggregate used by the dashboard charts."""

    type: ProductType
    count: int = 0
    total_balance: float = 0.0


class FinancialSummary(BaseModel):
    """Dashboard overview computed from active products and movements."""

    total_balance: float = 0.0
    active_products: int = 0
    upcoming_expirations: list[Product] = Field(default_factory=list)
    latest_movements: list[Movement] = Field(default_factory=list)
    distribution_by_type: list[TypeDistribution] = Field(default_factory=list)
