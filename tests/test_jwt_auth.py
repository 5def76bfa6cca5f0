"""Tests for bearer token inspection."""

import base64
import json
import time

import pytest

from portal.jwt_auth import InvalidTokenError, decode_token, is_token_valid
from portal.models.enums import UserRole
from tests.factories import make_token


def _segment(data: dict) -> str:
    raw = json.dumps(data).encode()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


class TestDecodeToken:
    """Tests for claim decoding."""

    def test_decodes_claims(self):
        token = make_token(userId="42", email="bob@example.com", rol="ADMIN")

        payload = decode_token(token)

        assert payload.user_id == "42"
        assert payload.email == "bob@example.com"
        assert payload.role == UserRole.ADMIN
        assert payload.expires_at > time.time()

    def test_signature_is_not_verified(self):
        header = _segment({"alg": "HS256", "typ": "JWT"})
        claims = _segment({"exp": int(time.time()) + 60, "userId": "7"})
        token = f"{header}.{claims}.not-a-real-signature"

        assert decode_token(token).user_id == "7"

    def test_identity_claims_are_read_loosely(self):
        payload = decode_token(make_token(userId=42, rol="SUPERVISOR"))

        assert payload.user_id == "42"
        assert payload.role == "SUPERVISOR"

    def test_expired_token_still_decodes(self):
        payload = decode_token(make_token(exp_offset_s=-60))

        assert payload.expires_at < time.time()

    @pytest.mark.parametrize(
        "token",
        ["", "only-one-segment", "two.segments", "a.b.c.d", "!!!.@@@.###"],
    )
    def test_malformed_tokens_raise(self, token):
        with pytest.raises(InvalidTokenError):
            decode_token(token)

    def test_missing_exp_claim_raises(self):
        header = _segment({"alg": "HS256", "typ": "JWT"})
        claims = _segment({"userId": "1"})

        with pytest.raises(InvalidTokenError):
            decode_token(f"{header}.{claims}.sig")


class TestIsTokenValid:
    """Tests for the local expiry check."""

    def test_future_expiry_is_valid(self):
        assert is_token_valid(make_token(exp_offset_s=120)) is True

    def test_past_expiry_is_invalid(self):
        assert is_token_valid(make_token(exp_offset_s=-1)) is False

    def test_explicit_clock(self):
        token = make_token(exp_offset_s=100)
        exp = decode_token(token).expires_at

        assert is_token_valid(token, now=exp - 1) is True
        assert is_token_valid(token, now=exp) is False

    @pytest.mark.parametrize(
        "claims",
        [{"userId": 42}, {"rol": "SUPERVISOR"}, {"email": None}],
    )
    def test_only_expiry_decides_validity(self, claims):
        assert is_token_valid(make_token(**claims)) is True

    def test_non_numeric_expiry_is_invalid(self):
        header = _segment({"alg": "HS256", "typ": "JWT"})
        claims = _segment({"exp": "tomorrow"})

        assert is_token_valid(f"{header}.{claims}.sig") is False

    @pytest.mark.parametrize("token", [None, "", "garbage", "a.b", "a.b.c"])
    def test_decode_failures_are_invalid(self, token):
        assert is_token_valid(token) is False
