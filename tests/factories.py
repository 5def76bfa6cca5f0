"""Test builders: fake REST backend, tokens, users and products.

The REST backend is replaced by :class:`FakeBackend`, an
``httpx.MockTransport`` handler with per-route canned responses.  Bearer
tokens are minted with PyJWT.
"""

import inspect
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

import httpx
import jwt

from portal.models.product import Movement, Product

API_URL = "http://api.test"
TOKEN_SECRET = "test-secret"

RouteHandler = Callable[[httpx.Request], Union[httpx.Response, Awaitable[httpx.Response]]]


class FakeBackend:
    """Canned responses keyed by ``(method, path)``; records every request."""

    def __init__(self) -> None:
        self._routes: dict[tuple[str, str], Union[RouteHandler, tuple[int, Any]]] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        status: int = 200,
        json: Any = None,
        handler: Optional[RouteHandler] = None,
    ) -> None:
        self._routes[(method.upper(), path)] = handler if handler is not None else (status, json)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [
            r for r in self.requests if r.method == method.upper() and r.url.path == path
        ]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        entry = self._routes.get((request.method, request.url.path))
        if entry is None:
            return httpx.Response(404, json={"message": "Not found"})
        if callable(entry):
            result = entry(request)
            if inspect.isawaitable(result):
                result = await result
            return result
        status, body = entry
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)


def make_token(exp_offset_s: float = 3600, **claims: Any) -> str:
    """Mint an HS256 token expiring *exp_offset_s* seconds from now."""
    now = int(time.time())
    payload = {
        "userId": "1",
        "email": "ana@example.com",
        "rol": "USER",
        "iat": now,
        "exp": now + exp_offset_s,
    }
    payload.update(claims)
    return jwt.encode(payload, TOKEN_SECRET, algorithm="HS256")


def user_payload(**overrides: Any) -> dict[str, Any]:
    payload = {
        "id": "1",
        "email": "ana@example.com",
        "nombre": "Ana",
        "apellido": "García",
        "rol": "USER",
        "createdAt": "2024-01-15T10:00:00Z",
    }
    payload.update(overrides)
    return payload


def auth_body(token: Optional[str] = None, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"user": user_payload(), "token": token or make_token()}
    body.update(extra)
    return body


def make_product(**overrides: Any) -> Product:
    data: dict[str, Any] = {
        "id": "p1",
        "tipo": "CUENTA",
        "nombre": "Cuenta Corriente",
        "numeroProducto": "ES79 2100 0418 000001 0001",
        "estado": "ACTIVO",
        "saldo": 100.0,
        "fechaContratacion": datetime(2024, 1, 1, tzinfo=timezone.utc),
        "moneda": "EUR",
    }
    data.update(overrides)
    return Product.model_validate(data)


def make_movement(**overrides: Any) -> Movement:
    data: dict[str, Any] = {
        "id": "m1",
        "productoId": "p1",
        "fecha": datetime(2024, 2, 1, tzinfo=timezone.utc),
        "concepto": "Nómina",
        "monto": 1500.0,
        "tipo": "INGRESO",
        "saldoResultante": 1600.0,
    }
    data.update(overrides)
    return Movement.model_validate(data)
