"""
Authentication utilities for OIDC state handling and ID token verification.

This module handles:
- Generating and comparing the anti-forgery state parameter
- Fetching and caching the provider's JWKS (JSON Web Key Set)
- Verifying ID tokens returned by the token endpoint
"""

import logging
import secrets
import time
from typing import Any, Dict, List, Optional

import httpx
from jose import JWTError, jwk, jwt

logger = logging.getLogger(__name__)

STATE_LENGTH = 32


# =============================================================================
# State Parameter
# =============================================================================

def generate_state(length: int = STATE_LENGTH) -> str:
    """
    Generate a cryptographically random URL-safe state value.

    Args:
        length: Number of characters in the result

    Returns:
        Random string of exactly ``length`` characters
    """
    return secrets.token_urlsafe(length)[:length]


def validate_state(received_state: Optional[str], expected_state: Optional[str]) -> bool:
    """
    Validate the OAuth state parameter returned on the callback.

    A missing value on either side is a mismatch.

    Args:
        received_state: State from the callback query string
        expected_state: State stored in the session at login

    Returns:
        True if states match
    """
    if not received_state or not expected_state:
        return False
    return secrets.compare_digest(received_state.encode(), expected_state.encode())


# =============================================================================
# JWKS Cache
# =============================================================================

class JWKSCache:
    """
    Cached copy of the provider's signing keys.

    The key set is replaced wholesale on every fetch, so concurrent readers
    always see a complete document.
    """

    def __init__(self, jwks_uri: str, cache_seconds: int = 3600):
        self.jwks_uri = jwks_uri
        self.cache_seconds = cache_seconds
        self._jwks: Optional[Dict[str, Any]] = None
        self._fetched_at: float = 0.0

    async def get(self, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Fetch JWKS from the provider with caching.

        Args:
            force_refresh: If True, bypass cache and fetch fresh JWKS

        Returns:
            JWKS document containing keys

        Raises:
            httpx.HTTPError: If JWKS endpoint is unreachable
            ValueError: If response is invalid
        """
        current_time = time.time()
        if not force_refresh and self._jwks and (current_time - self._fetched_at) < self.cache_seconds:
            return self._jwks

        async with httpx.AsyncClient() as client:
            response = await client.get(self.jwks_uri, timeout=10.0)
            response.raise_for_status()
            jwks_data = response.json()

        if "keys" not in jwks_data:
            raise ValueError("Invalid JWKS response: missing 'keys' field")

        self._jwks = jwks_data
        self._fetched_at = current_time
        logger.debug("Fetched JWKS", extra={"jwks_uri": self.jwks_uri, "key_count": len(jwks_data["keys"])})
        return jwks_data


def get_signing_key(token: str, jwks: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Extract the public key from JWKS that matches the token's kid.

    Tokens without a kid match the only key of a single-key set.

    Raises:
        JWTError: If token header is malformed
    """
    try:
        unverified_header = jwt.get_unverified_header(token)
    except JWTError as e:
        raise JWTError(f"Failed to decode token header: {e}")

    keys = jwks.get("keys", [])
    kid = unverified_header.get("kid")
    if not kid:
        return keys[0] if len(keys) == 1 else None

    for key in keys:
        if key.get("kid") == kid:
            return key

    return None


# =============================================================================
# ID Token Verification
# =============================================================================

async def verify_id_token(
    id_token: str,
    jwks_cache: JWKSCache,
    issuer: str,
    client_id: str,
    access_token: Optional[str] = None,
    algorithms: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Verify and decode an ID token.

    This function performs comprehensive validation:
    1. Finds the signing key in the (cached) JWKS, refetching once on a miss
    2. Verifies the token signature
    3. Validates standard claims (iss, aud, exp, nbf, iat, at_hash)

    Args:
        id_token: JWT ID token string
        jwks_cache: Provider key cache
        issuer: Expected 'iss' claim
        client_id: Expected 'aud' claim
        access_token: Access token issued alongside, checked against at_hash
        algorithms: Accepted signing algorithms (default RS256)

    Returns:
        Dictionary of verified token claims

    Raises:
        JWTError: If token is invalid, expired, or signature doesn't match
        httpx.HTTPError: If JWKS endpoint is unreachable
    """
    algorithms = algorithms or ["RS256"]

    jwks = await jwks_cache.get()
    signing_key = get_signing_key(id_token, jwks)
    if not signing_key:
        # Keys may have rotated
        jwks = await jwks_cache.get(force_refresh=True)
        signing_key = get_signing_key(id_token, jwks)

        if not signing_key:
            raise JWTError("Unable to find matching signing key in JWKS")

    alg = jwt.get_unverified_header(id_token).get("alg")
    if alg not in algorithms:
        raise JWTError(f"Unexpected ID token algorithm: {alg}")

    try:
        public_key = jwk.construct(signing_key, algorithm=alg)
    except Exception as e:
        raise JWTError(f"Failed to construct public key from JWK: {e}")

    try:
        claims = jwt.decode(
            id_token,
            public_key.to_pem().decode("utf-8"),
            algorithms=[alg],
            audience=client_id,
            issuer=issuer,
            access_token=access_token,
            options={
                "verify_signature": True,
                "verify_aud": True,
                "verify_iat": True,
                "verify_exp": True,
                "verify_nbf": True,
                "verify_iss": True,
                "verify_sub": True,
                "verify_jti": False,
                "verify_at_hash": access_token is not None,
                "leeway": 10,  # 10 seconds clock skew tolerance
            },
        )
    except jwt.ExpiredSignatureError:
        raise JWTError("ID token has expired")
    except jwt.JWTClaimsError as e:
        raise JWTError(f"Invalid token claims: {e}")

    return claims
