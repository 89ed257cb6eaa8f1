"""
SSO Middleware
==============

OpenID Connect session middleware for FastAPI applications.

Usage:
------
    from fastapi import FastAPI
    from sso_middleware import (
        HttpxOIDCClient, OIDCConfig, ServerSessionMiddleware, SSOOptions, TokenSetMiddleware, create_sso_router,
    )

    options = SSOOptions(
        application_domain=".example.com",
        oidc_config=OIDCConfig(
            base_url="https://app.example.com",
            client_id="my-client",
            oidc_issuer="https://sso.example.com/auth/realms/myRealm",
        ),
        get_landing_route=lambda request: "/dashboard",
    )
    client = HttpxOIDCClient.create(options)  # await client.discover() at startup

    app = FastAPI()
    app.add_middleware(TokenSetMiddleware, client=client, options=options)
    app.add_middleware(ServerSessionMiddleware, secret_key="...")
    app.include_router(create_sso_router(client, options))
"""

from .auth import (
    ClientMetadata,
    HttpxOIDCClient,
    InMemorySessionStore,
    OIDCClient,
    OIDCClientError,
    ServerSessionMiddleware,
    SessionStore,
    TokenSetMiddleware,
    create_sso_router,
    get_current_claims,
    get_session_remaining_time,
    is_authenticated,
    require_authentication,
)
from .models import BypassAuthentication, OIDCConfig, SSOOptions, SSORoutes, TokenSet

__all__ = [
    "BypassAuthentication",
    "ClientMetadata",
    "HttpxOIDCClient",
    "InMemorySessionStore",
    "OIDCClient",
    "OIDCClientError",
    "OIDCConfig",
    "SSOOptions",
    "SSORoutes",
    "ServerSessionMiddleware",
    "SessionStore",
    "TokenSet",
    "TokenSetMiddleware",
    "create_sso_router",
    "get_current_claims",
    "get_session_remaining_time",
    "is_authenticated",
    "require_authentication",
]
