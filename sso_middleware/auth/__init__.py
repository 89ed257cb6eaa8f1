"""
Authentication Package

This package implements the OpenID Connect authorization code flow for
FastAPI applications, backed by a server-side session keyed by a signed cookie.

Modules:
- controllers: login, auth callback, token set, logout and idle-time handlers
- routes: router factory, token-set middleware and route dependencies
- client: OIDC client contract and its httpx implementation
- helpers: typed session access and authentication state
- session: server-side session store and its cookie middleware
- utils: state generation, JWKS caching and ID token verification

The authentication flow:
1. Client hits the login route; a random state is stored in the session
2. User authenticates with the identity provider
3. The callback route checks the state and exchanges the code for tokens
4. TokenSetMiddleware refreshes expired tokens on every request
5. The logout route clears the session and ends the provider session
"""

from .client import (
    ClientMetadata,
    HttpxOIDCClient,
    IDTokenVerificationError,
    OIDCCallbackError,
    OIDCClient,
    OIDCClientError,
    OIDCDiscoveryError,
    TokenEndpointError,
)
from .controllers import (
    auth_callback_controller,
    login_controller,
    logout_controller,
    session_idle_remaining_time_controller,
    token_set_controller,
)
from .helpers import get_session_remaining_time, is_authenticated
from .session import InMemorySessionStore, ServerSessionMiddleware, SessionStore
from .routes import TokenSetMiddleware, create_sso_router, get_current_claims, require_authentication

__all__ = [
    # Client
    "ClientMetadata",
    "HttpxOIDCClient",
    "OIDCClient",

    # Controllers
    "auth_callback_controller",
    "login_controller",
    "logout_controller",
    "session_idle_remaining_time_controller",
    "token_set_controller",

    # Wiring
    "TokenSetMiddleware",
    "create_sso_router",
    "get_current_claims",
    "require_authentication",

    # Sessions
    "InMemorySessionStore",
    "ServerSessionMiddleware",
    "SessionStore",

    # Helpers
    "get_session_remaining_time",
    "is_authenticated",

    # Exceptions
    "IDTokenVerificationError",
    "OIDCCallbackError",
    "OIDCClientError",
    "OIDCDiscoveryError",
    "TokenEndpointError",
]
