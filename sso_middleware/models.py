"""
Data Models Module

This module defines the Pydantic models shared by the SSO middleware.

Models are organized by functional area:
- Configuration models (OIDC settings, bypass flags, route paths, options)
- Token models (the token set issued by the identity provider)
- Session models (the typed view over the cookie-backed session)
- Response models (health and error payloads of the standalone app)
"""

import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict, Field, field_validator
from starlette.requests import Request


# ============================================================================
# Configuration Models
# ============================================================================

class OIDCConfig(BaseModel):
    """Identity provider and client registration details."""

    model_config = ConfigDict(frozen=True)

    base_url: str = Field(..., description="Public base URL of the application (e.g., https://app.example.com)")
    client_id: str = Field(..., description="Client ID registered with the identity provider", min_length=1)
    oidc_issuer: str = Field(..., description="Issuer URL (e.g., https://sso.example.com/auth/realms/myRealm)")
    client_secret: Optional[str] = Field(None, description="Client secret for confidential clients")

    @field_validator("base_url", "oidc_issuer")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize URLs so paths can be appended with a single '/'."""
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Expected an absolute http(s) URL, got: '{v}'")
        return v


class BypassAuthentication(BaseModel):
    """
    Per-capability switches that disable authentication for local
    development and UI testing. All default to False.
    """

    model_config = ConfigDict(frozen=True)

    login: bool = Field(default=False, description="Login redirects straight to the landing route")
    token_set: bool = Field(default=False, description="Skip token refresh and protected-route checks")
    session_idle_remaining_time: bool = Field(
        default=False,
        description="Report a fixed remaining time instead of reading the session",
    )


class SSORoutes(BaseModel):
    """Paths the SSO router mounts its handlers on."""

    model_config = ConfigDict(frozen=True)

    login: str = "/login"
    auth_callback: str = "/auth-callback"
    logout: str = "/logout"
    session_idle_remaining_time: str = "/session-idle-remaining-time"


LandingRouteGetter = Callable[[Request], str]
AuthCallbackHook = Callable[[Request], Union[Awaitable[None], None]]


class SSOOptions(BaseModel):
    """Immutable configuration supplied by the embedding application."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    application_domain: str = Field(..., description="Cookie domain of the application (e.g., .example.com)")
    oidc_config: OIDCConfig
    get_landing_route: LandingRouteGetter = Field(..., description="Returns the path to land on after login")
    bypass_authentication: BypassAuthentication = Field(default_factory=BypassAuthentication)
    routes: SSORoutes = Field(default_factory=SSORoutes)
    authorization_url_params: Dict[str, str] = Field(
        default_factory=dict,
        description="Extra authorization request parameters (e.g., kc_idp_hint)",
    )
    on_auth_callback: Optional[AuthCallbackHook] = Field(
        None,
        description="Invoked once after every auth callback, whatever its outcome",
    )

    @property
    def redirect_uri(self) -> str:
        return f"{self.oidc_config.base_url}{self.routes.auth_callback}"

    @property
    def post_logout_redirect_uri(self) -> str:
        return f"{self.oidc_config.base_url}/"


# ============================================================================
# Token Models
# ============================================================================

def _jwt_expiry(token: Optional[str]) -> Optional[int]:
    """Read the 'exp' claim of a JWT without verifying it, if it is one."""
    if not token or token.count(".") != 2:
        return None
    try:
        exp = jwt.get_unverified_claims(token).get("exp")
    except JWTError:
        return None
    return int(exp) if exp is not None else None


class TokenSet(BaseModel):
    """
    Token bundle issued by the identity provider.

    Stored in the session as a plain dict (``model_dump``), so every field
    must stay JSON-serializable.
    """

    access_token: Optional[str] = None
    token_type: Optional[str] = None
    id_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = Field(None, description="Access token expiry (epoch seconds)")
    refresh_expires_at: Optional[int] = Field(None, description="Refresh token expiry (epoch seconds)")
    scope: Optional[str] = None
    session_state: Optional[str] = None

    @classmethod
    def from_token_response(
        cls,
        data: Dict[str, Any],
        previous: Optional["TokenSet"] = None,
        now: Optional[float] = None,
    ) -> "TokenSet":
        """
        Build a token set from a token endpoint JSON response.

        Args:
            data: Decoded token endpoint response
            previous: Token set being refreshed; its refresh token is kept
                      when the provider does not rotate it
            now: Current epoch time (defaults to time.time())

        Returns:
            New TokenSet
        """
        now = time.time() if now is None else now

        expires_at = data.get("expires_at")
        if expires_at is None and data.get("expires_in") is not None:
            expires_at = int(now) + int(data["expires_in"])

        refresh_token = data.get("refresh_token")
        refresh_expires_at = None
        if refresh_token:
            if data.get("refresh_expires_in"):
                refresh_expires_at = int(now) + int(data["refresh_expires_in"])
            else:
                refresh_expires_at = _jwt_expiry(refresh_token)
        elif previous is not None:
            refresh_token = previous.refresh_token
            refresh_expires_at = previous.refresh_expires_at

        return cls(
            access_token=data.get("access_token"),
            token_type=data.get("token_type"),
            id_token=data.get("id_token") or (previous.id_token if previous else None),
            refresh_token=refresh_token,
            expires_at=int(expires_at) if expires_at is not None else None,
            refresh_expires_at=refresh_expires_at,
            scope=data.get("scope"),
            session_state=data.get("session_state"),
        )

    def expires_in(self, now: Optional[float] = None) -> Optional[int]:
        """Seconds until the access token expires (negative once expired)."""
        if self.expires_at is None:
            return None
        now = time.time() if now is None else now
        return self.expires_at - int(now)

    def expired(self, now: Optional[float] = None) -> bool:
        """True if the access token has expired."""
        remaining = self.expires_in(now)
        return remaining is not None and remaining <= 0

    @property
    def session_expires_at(self) -> Optional[int]:
        """
        Idle deadline of the session (epoch seconds).

        The refresh token bounds the session; without one, the session
        lives exactly as long as the access token. None while a refresh
        token of unknown lifetime is held: the session then lasts until a
        refresh is rejected.
        """
        if self.refresh_expires_at is not None:
            return self.refresh_expires_at
        if self.refresh_token:
            return None
        return self.expires_at

    def session_expired(self, now: Optional[float] = None) -> bool:
        """True if the token set can no longer be refreshed."""
        deadline = self.session_expires_at
        if deadline is None:
            return False
        now = time.time() if now is None else now
        return deadline <= int(now)

    def claims(self) -> Dict[str, Any]:
        """
        Decode the ID token payload.

        The signature was verified when the token was obtained, so the
        payload is read without verification here.

        Raises:
            ValueError: If the token set holds no ID token
        """
        if not self.id_token:
            raise ValueError("id_token not present in TokenSet")
        try:
            return jwt.get_unverified_claims(self.id_token)
        except JWTError as e:
            raise ValueError(f"Malformed id_token: {e}") from e


# ============================================================================
# Session Models
# ============================================================================

class SessionData(BaseModel):
    """
    Typed view over the server-side session.

    The literal session keys are ``oidcState`` and ``tokenSet``.
    """

    model_config = ConfigDict(populate_by_name=True)

    oidc_state: Optional[str] = Field(None, alias="oidcState")
    token_set: Optional[TokenSet] = Field(None, alias="tokenSet")


class AuthContext(BaseModel):
    """Per-request authentication result, stored in request.state.auth."""

    claims: Optional[Dict[str, Any]] = None


# ============================================================================
# Health Check Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    provider_discovered: bool = Field(..., description="Whether the OIDC provider metadata is loaded")


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="Error type or code")
    message: str = Field(..., description="Human-readable error message")
    detail: Optional[str] = Field(None, description="Additional error details")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Error timestamp")
