"""
Bearer Token Inspection.

Decodes the claims segment of the bearer token so the client can decide
whether a persisted session is still worth restoring.

The signature is **not** verified here.  This is a local UX check only;
real authorization is enforced by the REST backend on every request.

Usage::

    from portal.jwt_auth import decode_token, is_token_valid

    if is_token_valid(stored_token):
        payload = decode_token(stored_token)
        print(payload.user_id, payload.expires_at)
"""

from __future__ import annotations

import time
from typing import Any, Optional

import jwt
from pydantic import ValidationError

from portal.models.auth_models import TokenPayload


class InvalidTokenError(ValueError):
    """Raised when a bearer token cannot be decoded into a ``TokenPayload``."""


def decode_token(token: str) -> TokenPayload:
    """Decode the claims of *token* without verifying its signature.

    Args:
        token: Compact JWS string (``header.payload.signature``).

    Returns:
        The parsed ``TokenPayload``.

    Raises:
        InvalidTokenError: If the token does not have three segments,
            the claims are not valid base64/JSON, or the ``exp`` claim is
            missing or malformed.
    """
    claims = _decode_claims(token)
    try:
        return TokenPayload.model_validate(claims)
    except ValidationError as exc:
        raise InvalidTokenError(f"Token claims are malformed: {exc}") from exc


def token_expiry(token: str) -> float:
    """Return the ``exp`` claim of *token* as epoch seconds.

    No other claim is inspected.

    Raises:
        InvalidTokenError: If the token cannot be decoded or ``exp`` is
            missing or not a number.
    """
    expiry = _decode_claims(token).get("exp")
    if isinstance(expiry, bool) or not isinstance(expiry, (int, float)):
        raise InvalidTokenError("Token has no numeric 'exp' claim")
    return float(expiry)


def is_token_valid(token: Optional[str], now: Optional[float] = None) -> bool:
    """Return ``True`` when the ``exp`` claim of *token* lies in the future.

    Any decode failure counts as invalid; this function never raises.

    Args:
        token: The stored bearer token, or ``None``.
        now: Current time as epoch seconds (defaults to ``time.time()``).
    """
    if not token:
        return False
    try:
        expiry = token_expiry(token)
    except InvalidTokenError:
        return False
    current = time.time() if now is None else now
    return expiry > current


def _decode_claims(token: str) -> dict[str, Any]:
    if not isinstance(token, str) or token.count(".") != 2:
        raise InvalidTokenError("Invalid token format")
    try:
        claims = jwt.decode(
            token,
            options={"verify_signature": False},
            algorithms=["HS256", "HS384", "HS512", "RS256", "ES256"],
        )
    except jwt.PyJWTError as exc:
        raise InvalidTokenError(f"Token could not be decoded: {exc}") from exc
    if not isinstance(claims, dict):
        raise InvalidTokenError("Token claims are not an object")
    return claims
