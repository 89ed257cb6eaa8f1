"""
Shared fixtures for the SSO middleware tests.
"""

import time
from typing import Any, Dict, Optional
from unittest.mock import AsyncMock, Mock
from urllib.parse import urlencode

import jwt
import pytest
from starlette.requests import Request

from sso_middleware.auth.client import ClientMetadata
from sso_middleware.config import Settings
from sso_middleware.models import OIDCConfig, SSOOptions, TokenSet

TEST_HMAC_SECRET = "test-id-token-secret-0123456789abcdef"


def create_id_token(claims: Optional[Dict[str, Any]] = None) -> str:
    """ID token for tests that only read claims (signature is never checked)."""
    payload = {"sub": "user-123", "email": "user@example.com"}
    payload.update(claims or {})
    return jwt.encode(payload, TEST_HMAC_SECRET, algorithm="HS256")


def create_token_set(
    expires_in: int = 300,
    refresh_expires_in: Optional[int] = 1800,
    claims: Optional[Dict[str, Any]] = None,
) -> TokenSet:
    now = int(time.time())
    return TokenSet(
        access_token="access-token",
        token_type="Bearer",
        id_token=create_id_token(claims),
        refresh_token="refresh-token",
        expires_at=now + expires_in,
        refresh_expires_at=now + refresh_expires_in if refresh_expires_in is not None else None,
    )


def create_request(session: Optional[dict] = None, query: Optional[Dict[str, str]] = None) -> Request:
    """Bare Starlette request with a session, as ServerSessionMiddleware would provide."""
    scope = {
        "type": "http",
        "method": "GET",
        "scheme": "http",
        "server": ("testserver", 80),
        "path": "/",
        "root_path": "",
        "query_string": urlencode(query or {}).encode(),
        "headers": [],
        "session": session if session is not None else {},
    }
    return Request(scope)


@pytest.fixture
def middleware_options():
    """Options mirroring a typical embedding application"""
    return SSOOptions(
        application_domain=".gov.bc.ca",
        oidc_config=OIDCConfig(
            base_url="https://example.com",
            client_id="myClient",
            oidc_issuer="https://example.com/auth/realms/myRealm",
        ),
        get_landing_route=Mock(return_value="/landing"),
    )


@pytest.fixture
def mock_client():
    """OIDC client double exposing the controller-facing contract"""
    client = Mock()
    client.metadata = ClientMetadata(
        client_id="myClient",
        redirect_uris=["https://example.com/auth-callback"],
        post_logout_redirect_uris=["https://example.com/"],
    )
    client.authorization_url = Mock(return_value="https://auth.url")
    client.callback_params = Mock(return_value={})
    client.callback = AsyncMock()
    client.refresh = AsyncMock()
    client.end_session_url = Mock(return_value="https://oidc-endpoint/logout")
    return client


class FakeOIDCClient:
    """In-process identity provider used by the application tests."""

    def __init__(self, token_set_factory=create_token_set):
        self.metadata = ClientMetadata(
            client_id="myClient",
            redirect_uris=["https://app.example.com/auth-callback"],
            post_logout_redirect_uris=["https://app.example.com/"],
        )
        self.token_set_factory = token_set_factory
        self.callback_calls = []
        self.refresh_calls = []
        self.fail_callback = False

    def authorization_url(self, **params: str) -> str:
        return f"https://sso.example.com/auth?{urlencode(params)}"

    def callback_params(self, request: Request) -> Dict[str, str]:
        return dict(request.query_params)

    async def callback(self, redirect_uri, params, checks) -> TokenSet:
        self.callback_calls.append((redirect_uri, dict(params), dict(checks)))
        if self.fail_callback:
            raise RuntimeError("invalid_grant")
        return self.token_set_factory()

    async def refresh(self, token_set: TokenSet) -> TokenSet:
        self.refresh_calls.append(token_set)
        return create_token_set(claims={"refreshed": True})

    def end_session_url(self, id_token_hint: Optional[str] = None) -> str:
        return "https://sso.example.com/logout"


@pytest.fixture
def fake_client():
    return FakeOIDCClient()


@pytest.fixture
def app_settings():
    """Settings for the standalone application"""
    return Settings(
        SSO_OIDC_ISSUER="https://sso.example.com/auth/realms/myRealm",
        SSO_CLIENT_ID="myClient",
        SSO_CLIENT_SECRET="test-client-secret",
        SSO_BASE_URL="https://app.example.com",
        SSO_APPLICATION_DOMAIN=".example.com",
        SSO_LANDING_ROUTE="/landing",
        SESSION_SECRET_KEY="test-session-secret-0123456789abcdef",
        SESSION_HTTPS_ONLY=False,
    )
