"""
SSO request handlers.

Each controller is a factory closing over the OIDC client and the
middleware options and returning an async Starlette handler. The handlers
never raise on authentication failures: state mismatches, rejected code
exchanges and failed refreshes all degrade to a redirect or to an
unauthenticated continuation.
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Optional

from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response

from sso_middleware.auth import helpers
from sso_middleware.auth.client import OIDCClient
from sso_middleware.auth.utils import generate_state, validate_state
from sso_middleware.models import SSOOptions

logger = logging.getLogger(__name__)

SSO_COOKIE_NAME = "SMSESSION"
MOCKED_SESSION_REMAINING_TIME = 3600

Handler = Callable[[Request], Awaitable[Response]]
CallNext = Callable[[Request], Awaitable[Response]]
NextCallback = Callable[[Request], Any]
CallbackHandler = Callable[[Request, Optional[NextCallback]], Awaitable[Response]]
MiddlewareHandler = Callable[[Request, CallNext], Awaitable[Response]]


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=302)


# =============================================================================
# Login
# =============================================================================

def login_controller(client: OIDCClient, options: SSOOptions) -> Handler:
    """Redirect to the provider's authorization endpoint, or to the landing route."""

    async def handler(request: Request) -> Response:
        if options.bypass_authentication.login or helpers.is_authenticated(request):
            return _redirect(options.get_landing_route(request))

        state = generate_state()
        session = helpers.get_session(request)
        session.oidc_state = state
        helpers.save_session(request, session)

        url = client.authorization_url(state=state, **options.authorization_url_params)
        logger.debug("Redirecting to authorization endpoint")
        return _redirect(url)

    return handler


# =============================================================================
# Auth Callback
# =============================================================================

def auth_callback_controller(client: OIDCClient, options: SSOOptions) -> CallbackHandler:
    """
    Validate the returned state and exchange the authorization code.

    ``call_next`` is invoked exactly once per call, after the response is
    decided, whatever the outcome.
    """

    async def handler(request: Request, call_next: Optional[NextCallback] = None) -> Response:
        session = helpers.get_session(request)
        expected_state = session.oidc_state
        received_state = request.query_params.get("state")

        session.oidc_state = None
        helpers.save_session(request, session)

        if not validate_state(received_state, expected_state):
            logger.warning(
                "OIDC state mismatch on auth callback",
                extra={"path": request.url.path, "state_in_session": expected_state is not None},
            )
            response = _redirect(options.oidc_config.base_url)
        else:
            response = await _exchange(request, received_state)

        if call_next is not None:
            try:
                result = call_next(request)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Auth callback hook failed: {e}",
                    extra={"exception_type": type(e).__name__},
                    exc_info=True,
                )

        return response

    async def _exchange(request: Request, state: str) -> Response:
        try:
            token_set = await client.callback(
                client.metadata.redirect_uris[0],
                client.callback_params(request),
                {"state": state},
            )
            claims = token_set.claims()
        except Exception as e:
            logger.warning(
                f"Token exchange failed: {e}",
                extra={"exception_type": type(e).__name__},
                exc_info=True,
            )
            return _redirect(options.oidc_config.base_url)

        session = helpers.get_session(request)
        session.token_set = token_set
        helpers.save_session(request, session)
        helpers.set_claims(request, claims)

        logger.info("User authenticated", extra={"sub": claims.get("sub")})
        return _redirect(options.get_landing_route(request))

    return handler


# =============================================================================
# Token Set
# =============================================================================

def token_set_controller(client: OIDCClient, options: SSOOptions) -> MiddlewareHandler:
    """Refresh an expired token set and expose the claims of the current one."""

    async def handler(request: Request, call_next: CallNext) -> Response:
        if options.bypass_authentication.token_set:
            return await call_next(request)

        if helpers.is_authenticated(request):
            session = helpers.get_session(request)
            token_set = session.token_set

            if token_set.expired():
                try:
                    token_set = await client.refresh(token_set)
                    claims = token_set.claims()
                except Exception as e:
                    logger.warning(
                        f"Token refresh failed, ending session: {e}",
                        extra={"exception_type": type(e).__name__},
                    )
                    session.token_set = None
                    helpers.save_session(request, session)
                    helpers.set_claims(request, None)
                else:
                    session.token_set = token_set
                    helpers.save_session(request, session)
                    helpers.set_claims(request, claims)
                    logger.debug("Refreshed token set", extra={"sub": claims.get("sub")})
            else:
                helpers.set_claims(request, token_set.claims())

        return await call_next(request)

    return handler


# =============================================================================
# Logout
# =============================================================================

def logout_controller(client: OIDCClient, options: SSOOptions) -> Handler:
    """Clear the session and SMSESSION cookie, then leave via the provider if logged in."""

    async def handler(request: Request) -> Response:
        token_set = helpers.get_token_set(request)
        request.session.clear()

        if token_set is not None:
            response = _redirect(client.end_session_url(id_token_hint=token_set.id_token))
            logger.info("User logged out")
        else:
            response = _redirect(client.metadata.post_logout_redirect_uris[0])

        response.delete_cookie(SSO_COOKIE_NAME, domain=options.application_domain, secure=True)
        return response

    return handler


# =============================================================================
# Session Idle Remaining Time
# =============================================================================

def session_idle_remaining_time_controller(client: OIDCClient, options: SSOOptions) -> Handler:
    """Report the seconds left before the session is idle-expired."""

    async def handler(request: Request) -> Response:
        if options.bypass_authentication.session_idle_remaining_time:
            return JSONResponse(MOCKED_SESSION_REMAINING_TIME)
        return JSONResponse(helpers.get_session_remaining_time(request))

    return handler
