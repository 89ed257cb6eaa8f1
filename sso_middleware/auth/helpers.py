"""
Session and request-context helpers shared by the SSO controllers.

The session itself is provided by ServerSessionMiddleware; these
helpers give it a typed shape (SessionData) and carry the per-request
AuthContext on request.state.
"""

import math
import time
from typing import Any, Dict, Optional

from starlette.requests import Request

from sso_middleware.models import AuthContext, SessionData, TokenSet

# Reported while the refresh token's lifetime is unknown; the session stays
# valid until a refresh is rejected.
UNBOUNDED_SESSION_REMAINING_TIME = 3600


# =============================================================================
# Session Access
# =============================================================================

def get_session(request: Request) -> SessionData:
    """Read the typed session view from request.session."""
    return SessionData.model_validate(dict(request.session))


def save_session(request: Request, data: SessionData) -> None:
    """
    Write the typed session view back to request.session.

    Unset fields are removed from the session; keys this package does not
    own are left untouched.
    """
    if data.oidc_state is None:
        request.session.pop("oidcState", None)
    else:
        request.session["oidcState"] = data.oidc_state

    if data.token_set is None:
        request.session.pop("tokenSet", None)
    else:
        request.session["tokenSet"] = data.token_set.model_dump()


def get_token_set(request: Request) -> Optional[TokenSet]:
    return get_session(request).token_set


# =============================================================================
# Request Context
# =============================================================================

def get_auth_context(request: Request) -> AuthContext:
    """Return the request's AuthContext, creating an empty one on first use."""
    auth = getattr(request.state, "auth", None)
    if auth is None:
        auth = AuthContext()
        request.state.auth = auth
    return auth


def set_claims(request: Request, claims: Optional[Dict[str, Any]]) -> None:
    get_auth_context(request).claims = claims


# =============================================================================
# Authentication State
# =============================================================================

def is_authenticated(request: Request) -> bool:
    """A request is authenticated iff its session holds a live token set."""
    token_set = get_token_set(request)
    return token_set is not None and not token_set.session_expired()


def get_session_remaining_time(request: Request, now: Optional[float] = None) -> int:
    """
    Seconds until the session is idle-expired.

    Uses the same deadline as is_authenticated (TokenSet.session_expires_at).
    Returns 0 when there is no live session, and UNBOUNDED_SESSION_REMAINING_TIME
    when the session has no known deadline.
    """
    token_set = get_token_set(request)
    now = time.time() if now is None else now
    if token_set is None or token_set.session_expired(now):
        return 0

    deadline = token_set.session_expires_at
    if deadline is None:
        return UNBOUNDED_SESSION_REMAINING_TIME
    return max(0, math.floor(deadline - now))
