"""
Form Validators.

Plain predicates behind the registration form and the contracting
wizard.  Every function returns a ``ValidationResult``: ``is_valid``, the
first human-readable (Spanish) message, and the machine-readable
``failures`` set (``"required"``, ``"minlength"``, ``"passwordMismatch"``,
...).  Aggregate validators prefix field failures with the field name
(``"email.required"``).
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

from portal.models.auth_models import PASSWORD_MISMATCH_MESSAGE, RegisterData, ValidationResult
from portal.models.enums import ProductType
from portal.models.product import NewProduct


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_EMAIL_RE: re.Pattern[str] = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
_PHONE_RE: re.Pattern[str] = re.compile(r"^[0-9]{9,15}$")

MIN_NAME_LENGTH: int = 2
MIN_PASSWORD_LENGTH: int = 8
PRODUCT_NAME_LENGTH: tuple[int, int] = (3, 100)
TERMS_MESSAGE: str = "Debes aceptar los términos y condiciones"


class NumericRange:
    """Inclusive bounds for one wizard field.  ``None`` means unbounded."""

    def __init__(self, minimum: Optional[float] = None, maximum: Optional[float] = None) -> None:
        self.minimum: Optional[float] = minimum
        self.maximum: Optional[float] = maximum

    def contains(self, value: float) -> bool:
        if self.minimum is not None and value < self.minimum:
            return False
        if self.maximum is not None and value > self.maximum:
            return False
        return True

    def __repr__(self) -> str:
        return f"NumericRange({self.minimum!r}, {self.maximum!r})"


# Per-type required fields and their ranges in the contracting wizard.
PRODUCT_FIELD_RULES: dict[ProductType, dict[str, NumericRange]] = {
    ProductType.ACCOUNT: {
        "initial_balance": NumericRange(0),
    },
    ProductType.DEPOSIT: {
        "initial_balance": NumericRange(1000),
        "interest_rate": NumericRange(0.1, 10),
        "term_months": NumericRange(3, 60),
    },
    ProductType.LOAN: {
        "initial_balance": NumericRange(1000),
        "interest_rate": NumericRange(1, 25),
        "term_months": NumericRange(12, 360),
    },
    ProductType.CARD: {
        "credit_limit": NumericRange(500, 50000),
        "interest_rate": NumericRange(5, 30),
    },
}

_FIELD_LABELS: dict[str, tuple[str, str]] = {
    "initial_balance": ("El saldo inicial", "requerido"),
    "interest_rate": ("La tasa de interés", "requerida"),
    "term_months": ("El plazo en meses", "requerido"),
    "credit_limit": ("El límite de crédito", "requerido"),
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _ok() -> ValidationResult:
    return ValidationResult(is_valid=True)


def _fail(message: str, *failures: str) -> ValidationResult:
    return ValidationResult(is_valid=False, error_message=message, failures=frozenset(failures))


def _combine(results: Iterable[tuple[str, ValidationResult]]) -> ValidationResult:
    """Merge field results; the first failing field supplies the message."""
    message: Optional[str] = None
    failures: set[str] = set()
    for field, result in results:
        if result.is_valid:
            continue
        if message is None:
            message = result.error_message
        prefix = f"{field}." if field else ""
        failures.update(f"{prefix}{code}" for code in result.failures)
    if message is None:
        return _ok()
    return ValidationResult(is_valid=False, error_message=message, failures=frozenset(failures))


def _format_number(value: float) -> str:
    return f"{value:g}"


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

def validate_email(email: Optional[str]) -> ValidationResult:
    if not email or not email.strip():
        return _fail("El email es requerido", "required")
    if not _EMAIL_RE.match(email.strip()):
        return _fail("Ingresa un email válido", "email")
    return _ok()


def validate_name(name: Optional[str], label: str = "nombre") -> ValidationResult:
    """Required, at least two characters after trimming."""
    stripped = (name or "").strip()
    if not stripped:
        return _fail(f"El {label} es requerido", "required")
    if len(stripped) < MIN_NAME_LENGTH:
        return _fail(f"El {label} debe tener al menos {MIN_NAME_LENGTH} caracteres", "minlength")
    return _ok()


def validate_phone(phone: Optional[str]) -> ValidationResult:
    """Optional; when given, 9 to 15 digits."""
    if not phone:
        return _ok()
    if not _PHONE_RE.match(phone):
        return _fail("Ingresa un teléfono válido (9-15 dígitos)", "pattern")
    return _ok()


def validate_password_strength(password: Optional[str]) -> ValidationResult:
    """Required, at least 8 characters, mixing upper case, lower case and digits."""
    if not password:
        return _fail("La contraseña es requerida", "required")
    if len(password) < MIN_PASSWORD_LENGTH:
        return _fail(
            f"La contraseña debe tener al menos {MIN_PASSWORD_LENGTH} caracteres", "minlength"
        )
    has_upper = any(ch.isupper() for ch in password)
    has_lower = any(ch.islower() for ch in password)
    has_digit = any(ch.isdigit() for ch in password)
    if not (has_upper and has_lower and has_digit):
        return _fail(
            "La contraseña debe contener mayúsculas, minúsculas y números", "passwordStrength"
        )
    return _ok()


def validate_password_match(password: Optional[str], confirm_password: Optional[str]) -> ValidationResult:
    if not confirm_password:
        return _fail("Confirma tu contraseña", "required")
    if password != confirm_password:
        return _fail(PASSWORD_MISMATCH_MESSAGE, "passwordMismatch")
    return _ok()


def validate_registration(data: RegisterData) -> ValidationResult:
    """Run every registration rule, including acceptance of the terms."""
    terms = _ok() if data.accepts_terms else _fail(TERMS_MESSAGE, "requiredTrue")
    return _combine(
        [
            ("email", validate_email(data.email)),
            ("nombre", validate_name(data.nombre, "nombre")),
            ("apellido", validate_name(data.apellido, "apellido")),
            ("telefono", validate_phone(data.telefono)),
            ("password", validate_password_strength(data.password)),
            ("", validate_password_match(data.password, data.confirm_password)),
            ("aceptaTerminos", terms),
        ]
    )


# ---------------------------------------------------------------------------
# Contracting wizard
# ---------------------------------------------------------------------------

def validate_new_product(new: NewProduct, accepts_terms: bool = True) -> ValidationResult:
    """Check the wizard output against the rules of its product type."""
    results: list[tuple[str, ValidationResult]] = []

    low, high = PRODUCT_NAME_LENGTH
    name = (new.name or "").strip()
    if not name:
        results.append(("nombre", _fail("El nombre del producto es requerido", "required")))
    elif not low <= len(name) <= high:
        code = "minlength" if len(name) < low else "maxlength"
        results.append(
            ("nombre", _fail(f"El nombre debe tener entre {low} y {high} caracteres", code))
        )

    if not (new.currency or "").strip():
        results.append(("moneda", _fail("La moneda es requerida", "required")))

    for field, bounds in PRODUCT_FIELD_RULES[new.type].items():
        results.append((field, _check_range(field, getattr(new, field), bounds)))

    if not accepts_terms:
        results.append(("aceptaTerminos", _fail(TERMS_MESSAGE, "requiredTrue")))

    return _combine(results)


def _check_range(field: str, value: Optional[float], bounds: NumericRange) -> ValidationResult:
    label, required = _FIELD_LABELS[field]
    if value is None:
        return _fail(f"{label} es {required}", "required")
    if bounds.contains(value):
        return _ok()

    code = "min" if bounds.minimum is not None and value < bounds.minimum else "max"
    if bounds.maximum is None:
        message = f"{label} debe ser al menos {_format_number(bounds.minimum or 0)}"
    else:
        message = (
            f"{label} debe estar entre {_format_number(bounds.minimum or 0)} "
            f"y {_format_number(bounds.maximum)}"
        )
    return _fail(message, code)
