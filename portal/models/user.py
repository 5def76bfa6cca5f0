"""
User Model.

Identity of the signed-in principal as returned by the REST backend.
Wire names are Spanish camelCase; attributes are snake_case.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from portal.models.enums import UserRole


class User(BaseModel):
    """Represents a portal user.

    Immutable once fetched; a re-login replaces the whole value.
    ``registration_date`` accepts the mock server's ``createdAt`` as well
    as ``fechaRegistro``.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, from_attributes=True)

    id: str
    email: str
    nombre: str
    apellido: str
    role: Optional[UserRole] = Field(default=None, alias="rol")
    avatar: Optional[str] = None
    telefono: Optional[str] = None
    registration_date: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("fechaRegistro", "createdAt", "registration_date"),
        serialization_alias="fechaRegistro",
    )
    last_access: Optional[datetime] = Field(default=None, alias="ultimoAcceso")

    @property
    def full_name(self) -> str:
        """Display name (first + last)."""
        return f"{self.nombre} {self.apellido}".strip()
