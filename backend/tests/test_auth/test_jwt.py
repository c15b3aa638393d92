"""Unit tests for JWT token creation, decoding, and embedded claims."""

from datetime import timedelta

import pytest
from jose import JWTError

from quillsign.auth.jwt import (
    create_access_token,
    create_refresh_token,
    create_token_pair,
    decode_token,
)


class TestCreateAccessToken:
    """Test access token creation."""

    def test_contains_type_access(self):
        token = create_access_token({"sub": "user-123"})
        payload = decode_token(token)
        assert payload["type"] == "access"

    def test_contains_sub_iat_exp(self):
        payload = decode_token(create_access_token({"sub": "user-abc"}))
        assert payload["sub"] == "user-abc"
        assert "iat" in payload
        assert "exp" in payload

    def test_does_not_mutate_input(self):
        data = {"sub": "user-123"}
        create_access_token(data)
        assert data == {"sub": "user-123"}


class TestCreateRefreshToken:
    """Test refresh token creation."""

    def test_contains_type_refresh(self):
        payload = decode_token(create_refresh_token({"sub": "user-123"}))
        assert payload["type"] == "refresh"
        assert payload["sub"] == "user-123"

    def test_strips_claims(self):
        """Refresh tokens never carry claims; they are re-read on refresh."""
        token = create_refresh_token({"sub": "user-123", "claims": {"subscriptionTier": "pro"}})
        assert "claims" not in decode_token(token)


class TestDecodeToken:
    """Test token decoding and validation."""

    def test_decode_expired_token_raises(self):
        token = create_access_token({"sub": "user-123"}, expires_delta=timedelta(seconds=-1))
        with pytest.raises(JWTError):
            decode_token(token)

    def test_decode_invalid_token_raises(self):
        with pytest.raises(JWTError):
            decode_token("not.a.valid.token")

    def test_decode_empty_string_raises(self):
        with pytest.raises(JWTError):
            decode_token("")


class TestCreateTokenPair:
    """Test token pair creation."""

    def test_returns_both_tokens(self):
        pair = create_token_pair("user-123")
        assert set(pair) == {"access_token", "refresh_token", "token_type"}
        assert pair["token_type"] == "bearer"

    def test_access_token_embeds_claims(self):
        claims = {"subscriptionStatus": "active", "subscriptionTier": "pro"}
        pair = create_token_pair("user-123", claims)
        payload = decode_token(pair["access_token"])
        assert payload["claims"] == claims

    def test_access_token_defaults_to_empty_claims(self):
        payload = decode_token(create_token_pair("user-123")["access_token"])
        assert payload["claims"] == {}

    def test_refresh_token_has_no_claims(self):
        pair = create_token_pair("user-123", {"subscriptionTier": "pro"})
        payload = decode_token(pair["refresh_token"])
        assert payload["type"] == "refresh"
        assert "claims" not in payload
