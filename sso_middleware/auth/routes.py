"""
SSO routes, middleware and dependencies.

Wires the controllers into a FastAPI application:
- create_sso_router: login, auth callback, logout and idle-time endpoints
- TokenSetMiddleware: runs the token-set controller before every request
- require_authentication / get_current_claims: guards for protected routes
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request, status
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from sso_middleware.auth import helpers
from sso_middleware.auth.client import OIDCClient
from sso_middleware.auth.controllers import (
    auth_callback_controller,
    login_controller,
    logout_controller,
    session_idle_remaining_time_controller,
    token_set_controller,
)
from sso_middleware.models import SSOOptions

logger = logging.getLogger(__name__)


# =============================================================================
# Router
# =============================================================================

def create_sso_router(client: OIDCClient, options: SSOOptions) -> APIRouter:
    """
    Build the router exposing the SSO endpoints.

    Paths come from ``options.routes``. The callback's continuation is
    ``options.on_auth_callback``.
    """
    router = APIRouter(tags=["authentication"])
    routes = options.routes

    login = login_controller(client, options)
    auth_callback = auth_callback_controller(client, options)
    logout = logout_controller(client, options)
    session_idle_remaining_time = session_idle_remaining_time_controller(client, options)

    @router.get(routes.login, include_in_schema=False)
    async def login_route(request: Request) -> Response:
        return await login(request)

    @router.get(routes.auth_callback, include_in_schema=False)
    async def auth_callback_route(request: Request) -> Response:
        return await auth_callback(request, options.on_auth_callback)

    @router.get(routes.logout, include_in_schema=False)
    async def logout_route(request: Request) -> Response:
        return await logout(request)

    @router.get(routes.session_idle_remaining_time, response_model=int)
    async def session_idle_remaining_time_route(request: Request) -> Response:
        return await session_idle_remaining_time(request)

    return router


# =============================================================================
# Middleware
# =============================================================================

class TokenSetMiddleware(BaseHTTPMiddleware):
    """
    Refreshes expired token sets and attaches claims to every request.

    Must run inside ServerSessionMiddleware (add it to the app before
    ServerSessionMiddleware so the session is available).
    """

    def __init__(self, app: ASGIApp, client: OIDCClient, options: SSOOptions):
        super().__init__(app)
        self.handler = token_set_controller(client, options)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        return await self.handler(request, call_next)


# =============================================================================
# FastAPI Dependencies
# =============================================================================

def get_current_claims(request: Request) -> Optional[Dict[str, Any]]:
    """
    FastAPI dependency returning the claims attached by TokenSetMiddleware,
    or None for anonymous requests.
    """
    return helpers.get_auth_context(request).claims


def require_authentication(request: Request) -> Dict[str, Any]:
    """
    FastAPI dependency for protected routes.

    Usage in routes:
        @app.get("/protected")
        async def protected_route(claims: dict = Depends(require_authentication)):
            return {"sub": claims.get("sub")}

    When the application stores its SSOOptions in ``app.state.sso_options``
    and bypasses the token set, every request is let through.

    Raises:
        HTTPException: 401 if the session is not authenticated
    """
    claims = helpers.get_auth_context(request).claims

    options: Optional[SSOOptions] = getattr(request.app.state, "sso_options", None)
    if options is not None and options.bypass_authentication.token_set:
        return claims or {}

    if not helpers.is_authenticated(request) or claims is None:
        logger.debug("Rejected unauthenticated request", extra={"path": request.url.path})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return claims
