"""
Authentication Pipeline Models.

Pydantic models and enumerations for the auth request/response
contracts between ``AuthService``, the REST backend and the callers.

Every auth operation returns a structured, inspectable ``AuthResult``
rather than raw strings or exception side-channels.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from portal.models.user import User


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

class AuthErrorCode(StrEnum):
    """Exhaustive enumeration of authentication error categories."""

    INVALID_CREDENTIALS = "invalid_credentials"
    EMAIL_ALREADY_EXISTS = "email_already_exists"
    NETWORK_ERROR = "network_error"
    VALIDATION_ERROR = "validation_error"
    SESSION_EXPIRED = "session_expired"
    UNKNOWN_ERROR = "unknown_error"


# HTTP status -> error category for rejected auth calls.
HTTP_STATUS_ERROR_MAP: dict[int, AuthErrorCode] = {
    400: AuthErrorCode.VALIDATION_ERROR,
    401: AuthErrorCode.INVALID_CREDENTIALS,
    409: AuthErrorCode.EMAIL_ALREADY_EXISTS,
}

PASSWORD_MISMATCH_MESSAGE: str = "Las contraseñas no coinciden"
AUTH_FAILED_MESSAGE: str = "Ha ocurrido un error durante la autenticación"
MISSING_REFRESH_TOKEN_MESSAGE: str = "No refresh token available"
SESSION_SUPERSEDED_MESSAGE: str = "La sesión fue cerrada mientras se procesaba la solicitud"


# ---------------------------------------------------------------------------
# Validation result
# ---------------------------------------------------------------------------

class ValidationResult(BaseModel):
    """Result of a client-side validation check.

    Attributes
    ----------
    is_valid:
        ``True`` when the value passes every rule.
    error_message:
        Human-readable description of the first failure, or ``None``.
    failures:
        Machine-readable reason codes (e.g. ``"passwordMismatch"``).
    """

    is_valid: bool
    error_message: Optional[str] = None
    failures: frozenset[str] = frozenset()

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class LoginCredentials(BaseModel):
    email: str
    password: str
    remember_me: bool = False


class RegisterData(BaseModel):
    """Registration form payload.  ``confirm_password`` never leaves the client."""

    model_config = ConfigDict(populate_by_name=True)

    email: str
    password: str
    confirm_password: str = Field(alias="confirmPassword")
    nombre: str
    apellido: str
    telefono: Optional[str] = None
    accepts_terms: bool = Field(default=False, alias="aceptaTerminos")


class PasswordReset(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str
    new_password: str = Field(alias="newPassword")
    confirm_password: str = Field(alias="confirmPassword")


class ChangePassword(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(alias="currentPassword")
    new_password: str = Field(alias="newPassword")
    confirm_password: str = Field(alias="confirmPassword")


# ---------------------------------------------------------------------------
# Backend responses
# ---------------------------------------------------------------------------

class AuthResponse(BaseModel):
    """Body of a successful login / register / refresh call.

    ``expires_in`` is expressed in milliseconds.
    """

    model_config = ConfigDict(populate_by_name=True)

    user: User
    token: str
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")
    expires_in: Optional[int] = Field(default=None, alias="expiresIn")


class TokenPayload(BaseModel):
    """Claims read from the bearer token's middle segment.

    Never cryptographically verified by the client; used only to decide
    whether a persisted session is worth restoring.  Identity claims are
    informational and accepted loosely (numeric ids, roles unknown to the
    portal); only ``exp`` decides validity.
    """

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    user_id: Optional[str] = Field(default=None, alias="userId")
    email: Optional[str] = None
    role: Optional[str] = Field(default=None, alias="rol")
    issued_at: Optional[float] = Field(default=None, alias="iat")
    expires_at: float = Field(alias="exp")


# ---------------------------------------------------------------------------
# Session snapshots
# ---------------------------------------------------------------------------

class AuthState(BaseModel):
    """Snapshot published to session subscribers on every transition."""

    user: Optional[User] = None
    token: Optional[str] = None
    is_authenticated: bool = False
    is_loading: bool = False
    error: Optional[str] = None


class StoredAuthRecord(BaseModel):
    """Persisted representation of a session in one storage scope."""

    token: str
    user: User
    refresh_token: Optional[str] = None
    remember: bool = False


# ---------------------------------------------------------------------------
# Unified auth response
# ---------------------------------------------------------------------------

class AuthResult(BaseModel):
    """Unified response for every ``AuthService`` operation.

    Callers inspect ``success`` to pick the happy path and use
    ``error_code`` to decide which feedback to display.

    Attributes
    ----------
    success:
        ``True`` when the operation completed without error.
    error_code:
        Structured error category (``None`` on success).
    error_message:
        Human-readable error description (``None`` on success).  Server
        messages are passed through verbatim.
    message:
        Informational server message on success (password flows).
    user:
        The authenticated user after login / register / refresh.
    """

    success: bool
    error_code: Optional[AuthErrorCode] = None
    error_message: Optional[str] = None
    message: Optional[str] = None
    user: Optional[User] = None

    model_config = {"from_attributes": True}
