"""
OIDC client used by the SSO controllers.

The controllers only depend on the ``OIDCClient`` protocol, so a test double
or another implementation can be injected without structural change.
``HttpxOIDCClient`` is the implementation used by the standalone app: it
discovers the provider, builds authorization and end-session URLs, exchanges
authorization codes and refreshes token sets over httpx.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol
from urllib.parse import urlencode

import httpx
from jose import JWTError
from starlette.requests import Request

from sso_middleware.auth.utils import JWKSCache, validate_state, verify_id_token
from sso_middleware.models import SSOOptions, TokenSet

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================

class OIDCClientError(Exception):
    """Base exception for OIDC client errors"""
    pass


class OIDCDiscoveryError(OIDCClientError):
    """Provider metadata could not be loaded or is incomplete"""
    pass


class OIDCCallbackError(OIDCClientError):
    """The authorization response is an error or fails its checks"""
    pass


class TokenEndpointError(OIDCClientError):
    """The token endpoint rejected a grant"""

    def __init__(self, message: str, error: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.error = error
        self.status_code = status_code


class IDTokenVerificationError(OIDCClientError):
    """The ID token failed signature or claim validation"""
    pass


# =============================================================================
# Client Contract
# =============================================================================

@dataclass(frozen=True)
class ClientMetadata:
    """Client registration as seen by the controllers."""
    client_id: str
    redirect_uris: List[str] = field(default_factory=list)
    post_logout_redirect_uris: List[str] = field(default_factory=list)


class OIDCClient(Protocol):
    metadata: ClientMetadata

    def authorization_url(self, **params: str) -> str:
        ...

    def callback_params(self, request: Request) -> Dict[str, str]:
        ...

    async def callback(
        self,
        redirect_uri: str,
        params: Mapping[str, str],
        checks: Mapping[str, str],
    ) -> TokenSet:
        ...

    async def refresh(self, token_set: TokenSet) -> TokenSet:
        ...

    def end_session_url(self, id_token_hint: Optional[str] = None) -> str:
        ...


# =============================================================================
# httpx Implementation
# =============================================================================

REQUIRED_PROVIDER_METADATA = ("issuer", "authorization_endpoint", "token_endpoint", "jwks_uri")


class HttpxOIDCClient:
    """
    OIDC relying-party client for the authorization code flow.

    Provider metadata is loaded by ``discover()``, which the application
    awaits at startup; URL builders raise OIDCDiscoveryError before that.
    """

    def __init__(
        self,
        issuer: str,
        metadata: ClientMetadata,
        client_secret: Optional[str] = None,
        jwks_cache_seconds: int = 3600,
        scope: str = "openid",
    ):
        self.issuer = issuer.rstrip("/")
        self.metadata = metadata
        self.client_secret = client_secret
        self.jwks_cache_seconds = jwks_cache_seconds
        self.scope = scope
        self.provider_metadata: Optional[Dict[str, Any]] = None
        self._jwks_cache: Optional[JWKSCache] = None

    @classmethod
    def create(cls, options: SSOOptions, jwks_cache_seconds: int = 3600) -> "HttpxOIDCClient":
        """Build an undiscovered client registered for the given options."""
        oidc_config = options.oidc_config
        metadata = ClientMetadata(
            client_id=oidc_config.client_id,
            redirect_uris=[options.redirect_uri],
            post_logout_redirect_uris=[options.post_logout_redirect_uri],
        )
        return cls(
            issuer=oidc_config.oidc_issuer,
            metadata=metadata,
            client_secret=oidc_config.client_secret,
            jwks_cache_seconds=jwks_cache_seconds,
        )

    @property
    def discovered(self) -> bool:
        return self.provider_metadata is not None

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    async def discover(self) -> Dict[str, Any]:
        """
        Load the provider's OpenID configuration document.

        Returns:
            Provider metadata

        Raises:
            OIDCDiscoveryError: If the document is unreachable, belongs to
                                another issuer or lacks required endpoints
        """
        discovery_url = f"{self.issuer}/.well-known/openid-configuration"

        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(discovery_url, timeout=10.0)
                response.raise_for_status()
                document = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise OIDCDiscoveryError(f"Unable to load provider metadata from {discovery_url}: {e}") from e

        missing = [key for key in REQUIRED_PROVIDER_METADATA if not document.get(key)]
        if missing:
            raise OIDCDiscoveryError(f"Provider metadata missing required fields: {', '.join(missing)}")

        if document["issuer"].rstrip("/") != self.issuer:
            raise OIDCDiscoveryError(
                f"Issuer mismatch: expected {self.issuer}, provider reported {document['issuer']}"
            )

        self.provider_metadata = document
        self._jwks_cache = JWKSCache(document["jwks_uri"], cache_seconds=self.jwks_cache_seconds)

        logger.info(
            "Discovered OIDC provider",
            extra={"issuer": self.issuer, "end_session_supported": "end_session_endpoint" in document},
        )
        return document

    def _endpoint(self, name: str) -> str:
        if self.provider_metadata is None:
            raise OIDCDiscoveryError("Provider metadata not loaded; call discover() first")
        endpoint = self.provider_metadata.get(name)
        if not endpoint:
            raise OIDCDiscoveryError(f"Provider does not advertise {name}")
        return endpoint

    # -------------------------------------------------------------------------
    # URL Builders
    # -------------------------------------------------------------------------

    def authorization_url(self, **params: str) -> str:
        """
        Build the authorization request URL.

        Defaults (response type, scope, client and redirect URI) can be
        overridden by ``params``.
        """
        query = {
            "client_id": self.metadata.client_id,
            "response_type": "code",
            "scope": self.scope,
            "redirect_uri": self.metadata.redirect_uris[0],
        }
        query.update(params)
        return f"{self._endpoint('authorization_endpoint')}?{urlencode(query)}"

    def end_session_url(self, id_token_hint: Optional[str] = None) -> str:
        """Build the provider's RP-initiated logout URL."""
        query = {"client_id": self.metadata.client_id}
        if self.metadata.post_logout_redirect_uris:
            query["post_logout_redirect_uri"] = self.metadata.post_logout_redirect_uris[0]
        if id_token_hint:
            query["id_token_hint"] = id_token_hint
        return f"{self._endpoint('end_session_endpoint')}?{urlencode(query)}"

    # -------------------------------------------------------------------------
    # Grants
    # -------------------------------------------------------------------------

    def callback_params(self, request: Request) -> Dict[str, str]:
        """Extract the authorization response parameters from the callback request."""
        return dict(request.query_params)

    async def callback(
        self,
        redirect_uri: str,
        params: Mapping[str, str],
        checks: Mapping[str, str],
    ) -> TokenSet:
        """
        Exchange the authorization response for a verified token set.

        Args:
            redirect_uri: Redirect URI used in the authorization request
            params: Authorization response parameters
            checks: Expected values; ``state`` is compared to params["state"]

        Raises:
            OIDCCallbackError: If the provider returned an error or checks fail
            TokenEndpointError: If the code exchange is rejected
            IDTokenVerificationError: If the returned ID token is invalid
        """
        if params.get("error"):
            raise OIDCCallbackError(
                f"Authorization failed: {params.get('error_description') or params['error']}"
            )

        if "state" in checks and not validate_state(params.get("state"), checks["state"]):
            raise OIDCCallbackError("State mismatch")

        code = params.get("code")
        if not code:
            raise OIDCCallbackError("Authorization response missing 'code'")

        token_data = await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        })

        if not token_data.get("id_token"):
            raise IDTokenVerificationError("Token response missing id_token")

        await self._verify_id_token(token_data["id_token"], token_data.get("access_token"))
        return TokenSet.from_token_response(token_data)

    async def refresh(self, token_set: TokenSet) -> TokenSet:
        """
        Refresh a token set with its refresh token.

        Raises:
            OIDCClientError: If the token set has no refresh token
            TokenEndpointError: If the refresh grant is rejected
            IDTokenVerificationError: If a returned ID token is invalid
        """
        if not token_set.refresh_token:
            raise OIDCClientError("refresh_token not present in TokenSet")

        token_data = await self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": token_set.refresh_token,
        })

        if token_data.get("id_token"):
            await self._verify_id_token(token_data["id_token"], token_data.get("access_token"))

        return TokenSet.from_token_response(token_data, previous=token_set)

    async def _token_request(self, payload: Dict[str, str]) -> Dict[str, Any]:
        token_endpoint = self._endpoint("token_endpoint")

        payload = dict(payload)
        payload["client_id"] = self.metadata.client_id
        if self.client_secret:
            payload["client_secret"] = self.client_secret

        async with httpx.AsyncClient() as client:
            response = await client.post(
                token_endpoint,
                data=payload,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=10.0,
            )

        if not response.is_success:
            error_data = {}
            if response.headers.get("content-type", "").startswith("application/json"):
                error_data = response.json()
            error = error_data.get("error")
            error_msg = error_data.get("error_description") or error or "Token request failed"
            raise TokenEndpointError(
                f"{payload['grant_type']} grant failed: {error_msg}",
                error=error,
                status_code=response.status_code,
            )

        return response.json()

    async def _verify_id_token(self, id_token: str, access_token: Optional[str]) -> Dict[str, Any]:
        algorithms = self.provider_metadata.get("id_token_signing_alg_values_supported") or ["RS256"]
        try:
            return await verify_id_token(
                id_token,
                self._jwks_cache,
                issuer=self.provider_metadata["issuer"],
                client_id=self.metadata.client_id,
                access_token=access_token,
                algorithms=[alg for alg in algorithms if alg != "none"],
            )
        except (JWTError, ValueError, httpx.HTTPError) as e:
            raise IDTokenVerificationError(f"ID token verification failed: {e}") from e
