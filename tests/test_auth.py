"""
Unit tests for session token handling (src/auth.py).

decode_token_expiry() is a pure function: given a token and "now", it returns
the expiry instant. These tests cover the well-formed case and every fallback
path (not a JWT, no exp claim, unusable exp claim).
"""

import base64
import json

import pytest

from src.auth import (
    DEFAULT_TOKEN_LIFETIME_SECONDS,
    TOKEN_REFRESH_MARGIN_SECONDS,
    SessionToken,
    decode_token_expiry,
)

NOW = 1_750_000_000.0


def _unsigned_token(payload_segment: str) -> str:
    header = base64.urlsafe_b64encode(json.dumps({"alg": "HS256", "typ": "JWT"}).encode())
    return f"{header.decode().rstrip('=')}.{payload_segment}.c2lnbmF0dXJl"


class TestDecodeTokenExpiry:
    """Tests for the decode_token_expiry() function."""

    # ----- Happy path -----

    def test_reads_exp_claim(self, make_token):
        """A JWT with an exp claim yields that claim as the expiry instant."""
        token = make_token(exp=1_750_003_600)

        assert decode_token_expiry(token, now=NOW) == 1_750_003_600.0

    def test_signature_is_not_verified(self, make_token):
        """Tokens signed with a key we don't know still decode."""
        token = make_token(exp=1_750_007_200, secret="some-other-signing-secret-we-never-see")

        assert decode_token_expiry(token, now=NOW) == 1_750_007_200.0

    def test_expired_token_still_decodes(self, make_token):
        """An exp claim in the past is returned as-is; freshness is decided elsewhere."""
        token = make_token(exp=1_000_000_000)

        assert decode_token_expiry(token, now=NOW) == 1_000_000_000.0

    # ----- Fallback to one hour -----

    @pytest.mark.parametrize(
        "token",
        [
            "",
            "not-a-jwt-token",
            "only.two",
            "a.b.c",
            "four.part.token.here",
        ],
    )
    def test_malformed_token_falls_back_to_one_hour(self, token):
        assert decode_token_expiry(token, now=NOW) == NOW + DEFAULT_TOKEN_LIFETIME_SECONDS

    def test_payload_that_is_not_json_falls_back(self):
        segment = base64.urlsafe_b64encode(b"definitely not json").decode().rstrip("=")

        assert decode_token_expiry(_unsigned_token(segment), now=NOW) == NOW + 3600

    def test_token_without_exp_claim_falls_back(self, make_token):
        token = make_token(include_exp=False)

        assert decode_token_expiry(token, now=NOW) == NOW + 3600

    @pytest.mark.parametrize("exp", ["1750003600", 0, True, None, [1750003600]])
    def test_unusable_exp_claim_falls_back(self, make_token, exp):
        """String, zero, boolean, null and list exp claims are all ignored."""
        token = make_token(include_exp=False, extra_claims={"exp": exp})

        assert decode_token_expiry(token, now=NOW) == NOW + 3600

    def test_fallback_is_relative_to_now(self):
        assert decode_token_expiry("garbage", now=0.0) == DEFAULT_TOKEN_LIFETIME_SECONDS


class TestSessionToken:
    """Tests for the one-minute refresh margin."""

    def test_fresh_well_before_expiry(self):
        token = SessionToken(access_token="abc", expires_at=NOW + 3600)

        assert token.is_fresh(NOW)

    def test_stale_inside_refresh_margin(self):
        """With fewer than 60 seconds left the token must be refreshed."""
        token = SessionToken(access_token="abc", expires_at=NOW + 59)

        assert not token.is_fresh(NOW)

    def test_stale_exactly_at_refresh_margin(self):
        token = SessionToken(access_token="abc", expires_at=NOW + TOKEN_REFRESH_MARGIN_SECONDS)

        assert not token.is_fresh(NOW)

    def test_fresh_just_outside_refresh_margin(self):
        token = SessionToken(access_token="abc", expires_at=NOW + 61)

        assert token.is_fresh(NOW)

    def test_stale_after_expiry(self):
        token = SessionToken(access_token="abc", expires_at=NOW - 10)

        assert not token.is_fresh(NOW)

    def test_authorization_header(self):
        token = SessionToken(access_token="abc.def.ghi", expires_at=NOW)

        assert token.authorization_header == "Bearer abc.def.ghi"
