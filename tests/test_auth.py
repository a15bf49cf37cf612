"""
Tests for signed payloads, bearer tokens and OAuth state.
"""

import time

import pytest
from fastapi import HTTPException

from auth.jwt import create_token, verify_token
from auth.signing import InvalidSignature, sign, verify
from connectors.routes import create_state, verify_state
from utils.schemas import Provider


class TestSigning:
    def test_round_trip(self):
        token = sign({"user_id": "u1"}, "secret", 60)
        payload = verify(token, "secret")
        assert payload["user_id"] == "u1"
        assert payload["exp"] > time.time()

    def test_wrong_secret(self):
        token = sign({"user_id": "u1"}, "secret", 60)
        with pytest.raises(InvalidSignature, match="bad signature"):
            verify(token, "other-secret")

    def test_expired(self):
        token = sign({"user_id": "u1"}, "secret", 60, now=1000.0)
        assert verify(token, "secret", now=1059.0)["user_id"] == "u1"
        with pytest.raises(InvalidSignature, match="expired"):
            verify(token, "secret", now=1061.0)

    @pytest.mark.parametrize("token", ["", "no-dot", "!!!.abc", "e30=.deadbeef"])
    def test_malformed(self, token):
        with pytest.raises(InvalidSignature):
            verify(token, "secret")


class TestBearerTokens:
    def test_create_and_verify(self):
        assert verify_token(create_token("user-42")) == "user-42"

    def test_invalid_token_is_401(self):
        with pytest.raises(HTTPException) as exc_info:
            verify_token("garbage")
        assert exc_info.value.status_code == 401


class TestOAuthState:
    def test_state_round_trip(self):
        state = create_state("user-1", Provider.APPLE_MUSIC)
        assert verify_state(state, Provider.APPLE_MUSIC) == "user-1"

    def test_state_bound_to_provider(self):
        state = create_state("user-1", Provider.SPOTIFY)
        with pytest.raises(HTTPException) as exc_info:
            verify_state(state, Provider.APPLE_MUSIC)
        assert exc_info.value.status_code == 400
