"""
Catalog Pipeline Models.

Filter criteria, sort specification, page window and the derived view
consumed by the product list.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from portal.models.enums import ProductStatus, ProductType, SortDirection
from portal.models.product import Product


class FilterCriteria(BaseModel):
    """Conjunctive product filter.  Absent fields mean "no constraint".

    Empty strings coming from cleared form controls are normalised to
    ``None`` so they never constrain the result.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: Optional[ProductType] = Field(default=None, alias="tipo")
    status: Optional[ProductStatus] = Field(default=None, alias="estado")
    date_from: Optional[datetime] = Field(default=None, alias="fechaDesde")
    date_to: Optional[datetime] = Field(default=None, alias="fechaHasta")
    search_text: Optional[str] = Field(default=None, alias="busqueda")

    @field_validator("type", "status", "date_from", "date_to", "search_text", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class SortSpec(BaseModel):
    """Requested ordering.

    ``column`` is a plain string so that an unknown column can reach the
    pipeline, where it degrades to "keep input order".
    """

    model_config = ConfigDict(frozen=True)

    column: Optional[str] = None
    direction: SortDirection = SortDirection.NONE


class PageWindow(BaseModel):
    """Zero-based page window over the sorted sequence."""

    model_config = ConfigDict(frozen=True)

    page_index: int = Field(default=0, ge=0)
    page_size: int = Field(default=10, gt=0)

    @property
    def start(self) -> int:
        return self.page_index * self.page_size

    @property
    def end(self) -> int:
        return self.start + self.page_size


class CatalogView(BaseModel):
    """One page of the filtered and sorted catalog."""

    items: list[Product] = Field(default_factory=list)
    total_count: int = 0
