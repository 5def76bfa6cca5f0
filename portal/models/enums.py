"""
Shared Enumerations for Portal Models.

All string enumerations for type-safe field constraints.
StrEnum values compare equal to their wire strings, so
``product.type == "DEPOSITO"`` works as well as
``product.type == ProductType.DEPOSIT``.
"""

from __future__ import annotations
from enum import StrEnum


class UserRole(StrEnum):
    """Roles a portal user may hold.  The role is optional on a user."""

    ADMIN = "ADMIN"
    USER = "USER"
    GUEST = "GUEST"


class ProductType(StrEnum):
    """Financial product families offered by the portal."""

    ACCOUNT = "CUENTA"
    DEPOSIT = "DEPOSITO"
    LOAN = "PRESTAMO"
    CARD = "TARJETA"


class ProductStatus(StrEnum):
    """Lifecycle states of a contracted product."""

    ACTIVE = "ACTIVO"
    INACTIVE = "INACTIVO"
    PENDING = "PENDIENTE"
    CANCELLED = "CANCELADO"


class MovementType(StrEnum):
    """Direction of a product movement."""

    INCOME = "INGRESO"
    EXPENSE = "EGRESO"


class SortColumn(StrEnum):
    """Catalog columns with a natural ordering."""

    NAME = "nombre"
    TYPE = "tipo"
    STATUS = "estado"
    BALANCE = "saldo"
    CONTRACTED_AT = "fechaContratacion"


class SortDirection(StrEnum):
    """Sort direction; ``NONE`` restores the unsorted order."""

    ASC = "asc"
    DESC = "desc"
    NONE = ""
