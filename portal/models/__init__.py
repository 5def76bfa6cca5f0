from __future__ import annotations

"""
Data Models Package.

Re-exports all Pydantic models for short imports:
    from portal.models import User, Product, FilterCriteria, AuthResult
    from portal.models import UserRole, ProductType, ProductStatus
"""

from portal.models.enums import (
    MovementType,
    ProductStatus,
    ProductType,
    SortColumn,
    SortDirection,
    UserRole,
)
from portal.models.user import User
from portal.models.auth_models import (
    AuthErrorCode,
    AuthResponse,
    AuthResult,
    AuthState,
    ChangePassword,
    LoginCredentials,
    PasswordReset,
    RegisterData,
    StoredAuthRecord,
    TokenPayload,
    ValidationResult,
)
from portal.models.product import (
    FinancialSummary,
    Movement,
    NewProduct,
    Product,
    TypeDistribution,
)
from portal.models.catalog_models import CatalogView, FilterCriteria, PageWindow, SortSpec

__all__ = [
    "UserRole",
    "ProductType",
    "ProductStatus",
    "MovementType",
    "SortColumn",
    "SortDirection",
    "User",
    "AuthErrorCode",
    "AuthResponse",
    "AuthResult",
    "AuthState",
    "ChangePassword",
    "LoginCredentials",
    "PasswordReset",
    "RegisterData",
    "StoredAuthRecord",
    "TokenPayload",
    "ValidationResult",
    "Product",
    "Movement",
    "NewProduct",
    "TypeDistribution",
    "FinancialSummary",
    "FilterCriteria",
    "SortSpec",
    "PageWindow",
    "CatalogView",
]
