"""
Token and session model tests.
"""

import jwt
import pytest

from conftest import TEST_HMAC_SECRET, create_id_token
from sso_middleware.models import OIDCConfig, SessionData, TokenSet

NOW = 1_700_000_000


class TestTokenSetFromTokenResponse:

    def test_computes_expiry_from_expires_in(self):
        token_set = TokenSet.from_token_response(
            {"access_token": "a", "expires_in": 300, "refresh_token": "r", "refresh_expires_in": 1800},
            now=NOW,
        )

        assert token_set.expires_at == NOW + 300
        assert token_set.refresh_expires_at == NOW + 1800

    def test_reads_refresh_expiry_from_a_jwt_refresh_token(self):
        refresh_token = jwt.encode({"exp": NOW + 900}, TEST_HMAC_SECRET, algorithm="HS256")

        token_set = TokenSet.from_token_response(
            {"access_token": "a", "expires_in": 300, "refresh_token": refresh_token},
            now=NOW,
        )

        assert token_set.refresh_expires_at == NOW + 900

    def test_opaque_refresh_token_has_unknown_expiry(self):
        token_set = TokenSet.from_token_response(
            {"access_token": "a", "expires_in": 300, "refresh_token": "opaque"},
            now=NOW,
        )

        assert token_set.refresh_expires_at is None
        assert not token_set.session_expired(now=NOW + 10_000)

    def test_keeps_the_previous_refresh_token_when_not_rotated(self):
        previous = TokenSet(
            access_token="old",
            id_token=create_id_token(),
            refresh_token="keep-me",
            refresh_expires_at=NOW + 600,
        )

        token_set = TokenSet.from_token_response({"access_token": "new", "expires_in": 60}, previous=previous, now=NOW)

        assert token_set.access_token == "new"
        assert token_set.refresh_token == "keep-me"
        assert token_set.refresh_expires_at == NOW + 600
        assert token_set.id_token == previous.id_token


class TestTokenSetExpiry:

    def test_expired_once_expires_at_is_reached(self):
        token_set = TokenSet(access_token="a", expires_at=NOW)

        assert not token_set.expired(now=NOW - 1)
        assert token_set.expired(now=NOW)
        assert token_set.expires_in(now=NOW + 5) == -5

    def test_never_expires_without_expires_at(self):
        assert not TokenSet(access_token="a").expired(now=NOW)

    def test_session_follows_the_refresh_token(self):
        token_set = TokenSet(access_token="a", refresh_token="r", expires_at=NOW, refresh_expires_at=NOW + 100)

        assert token_set.expired(now=NOW + 50)
        assert not token_set.session_expired(now=NOW + 50)
        assert token_set.session_expired(now=NOW + 100)

    def test_session_follows_the_access_token_without_refresh_token(self):
        token_set = TokenSet(access_token="a", expires_at=NOW)

        assert not token_set.session_expired(now=NOW - 1)
        assert token_set.session_expired(now=NOW)


class TestTokenSetClaims:

    def test_decodes_the_id_token_payload(self):
        token_set = TokenSet(id_token=create_id_token({"name": "Test User"}))

        claims = token_set.claims()

        assert claims["sub"] == "user-123"
        assert claims["name"] == "Test User"

    def test_raises_without_an_id_token(self):
        with pytest.raises(ValueError):
            TokenSet(access_token="a").claims()

    def test_raises_on_a_malformed_id_token(self):
        with pytest.raises(ValueError):
            TokenSet(id_token="not-a-jwt").claims()


class TestSessionData:

    def test_reads_the_literal_session_keys(self):
        data = SessionData.model_validate({"oidcState": "abc", "tokenSet": {"access_token": "a"}, "other": 1})

        assert data.oidc_state == "abc"
        assert data.token_set.access_token == "a"

    def test_empty_session(self):
        data = SessionData.model_validate({})

        assert data.oidc_state is None
        assert data.token_set is None


class TestOIDCConfig:

    def test_strips_trailing_slashes(self):
        config = OIDCConfig(base_url="https://example.com/", client_id="c", oidc_issuer="https://sso.example.com/")

        assert config.base_url == "https://example.com"
        assert config.oidc_issuer == "https://sso.example.com"

    def test_rejects_relative_urls(self):
        with pytest.raises(ValueError):
            OIDCConfig(base_url="example.com", client_id="c", oidc_issuer="https://sso.example.com")
