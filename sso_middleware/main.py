"""
FastAPI SSO Application Factory
===============================

Standalone service wiring the SSO middleware into a FastAPI application.
Embedding applications usually only need ``create_sso_router`` and
``TokenSetMiddleware``; this module shows the complete setup and can be run
directly.

Routers:
    - /login, /auth-callback, /logout : OIDC authorization code flow
    - /session-idle-remaining-time    : Seconds before the session goes idle
    - /api/user                       : Claims of the signed-in user (protected)
    - /health                         : Health check endpoint

Environment Variables Required:
    - SSO_OIDC_ISSUER: Issuer URL of the identity provider
    - SSO_CLIENT_ID: Client ID registered with the identity provider
    - SSO_BASE_URL: Public base URL of this service
    - SSO_APPLICATION_DOMAIN: Cookie domain (e.g., ".example.com")
    - SESSION_SECRET_KEY: Secret for signing the session cookie
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn sso_middleware.main:create_app --factory --reload --host 0.0.0.0 --port 8080

    With custom log level:
        LOG_LEVEL=DEBUG uvicorn sso_middleware.main:create_app --factory --reload
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from sso_middleware.auth import (
    HttpxOIDCClient,
    InMemorySessionStore,
    OIDCClient,
    ServerSessionMiddleware,
    SessionStore,
    TokenSetMiddleware,
    create_sso_router,
    require_authentication,
)
from sso_middleware.config import Settings, get_settings, validate_configuration
from sso_middleware.models import ErrorResponse, HealthResponse

SERVICE_NAME = "sso-middleware"
SERVICE_VERSION = "1.0.0"


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def create_app(
    settings: Optional[Settings] = None,
    client: Optional[OIDCClient] = None,
    session_store: Optional[SessionStore] = None,
) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management (provider discovery)
        - Session and token-set middleware
        - SSO routes
        - Exception handlers

    Args:
        settings: Settings to use (defaults to get_settings())
        client: OIDC client to use (defaults to an HttpxOIDCClient
                discovered at startup)
        session_store: Backend for session contents (defaults to an
                       in-memory store)

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()
    options = settings.to_options()
    client = client or HttpxOIDCClient.create(options, jwks_cache_seconds=settings.JWKS_CACHE_SECONDS)
    session_store = session_store if session_store is not None else InMemorySessionStore()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup tasks:
            - Configure logging
            - Report configuration problems
            - Discover the OIDC provider
        """
        setup_logging(settings.LOG_LEVEL)
        logger = logging.getLogger("sso_middleware.main")

        status = validate_configuration(settings)
        for error in status["errors"]:
            logger.error(f"Configuration error: {error}")
        for warning in status["warnings"]:
            logger.warning(f"Configuration warning: {warning}")

        if isinstance(client, HttpxOIDCClient) and not client.discovered:
            await client.discover()

        logger.info(
            "SSO middleware started",
            extra={
                "issuer": settings.SSO_OIDC_ISSUER,
                "base_url": settings.SSO_BASE_URL,
                "version": SERVICE_VERSION,
            }
        )

        yield

        logger.info("SSO middleware shutdown complete")

    app = FastAPI(
        title="SSO Middleware",
        description="OpenID Connect session middleware",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.sso_options = options
    app.state.oidc_client = client
    app.state.session_store = session_store

    # Order matters: the last middleware added runs first, and the
    # token-set middleware needs the session.
    app.add_middleware(TokenSetMiddleware, client=client, options=options)
    app.add_middleware(
        ServerSessionMiddleware,
        secret_key=settings.SESSION_SECRET_KEY,
        store=session_store,
        session_cookie=settings.SESSION_COOKIE_NAME,
        max_age=settings.SESSION_MAX_AGE_SECONDS,
        same_site="lax",
        https_only=settings.SESSION_HTTPS_ONLY,
    )

    app.include_router(create_sso_router(client, options))

    @app.get("/health", tags=["System"], response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Return service status and whether the provider has been discovered."""
        return HealthResponse(
            status="ok",
            service=SERVICE_NAME,
            version=SERVICE_VERSION,
            provider_discovered=getattr(client, "discovered", True),
        )

    @app.get("/api/user", tags=["User"])
    async def current_user(claims: Dict[str, Any] = Depends(require_authentication)) -> Dict[str, Any]:
        """Claims of the signed-in user."""
        return {"claims": claims}

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Logs unhandled errors and returns a standardized error response.
        """
        logger = logging.getLogger("sso_middleware.main")
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        error = ErrorResponse(
            error="internal_server_error",
            message="An unexpected error occurred",
            detail=str(exc) if settings.LOG_LEVEL == "DEBUG" else None,
        )
        return JSONResponse(status_code=500, content=error.model_dump(mode="json"))

    return app


if __name__ == "__main__":
    """
    Direct execution entry point.

    This allows running the service directly with: python -m sso_middleware.main
    """
    settings = get_settings()

    uvicorn.run(
        create_app(settings),
        host=settings.SSO_HOST,
        port=settings.SSO_PORT,
        log_level=settings.LOG_LEVEL.lower()
    )
