"""
Configuration module for the SSO middleware.

This module uses Pydantic Settings to load and validate environment variables
for the OIDC provider, the application cookie domain, session cookies,
authentication bypass flags and logging.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sso_middleware.models import BypassAuthentication, OIDCConfig, SSOOptions


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Everything the standalone application needs to build SSOOptions, the
    OIDC client and the session middleware is defined here.
    """

    # =========================================================================
    # OIDC Provider Configuration
    # =========================================================================

    SSO_OIDC_ISSUER: str = Field(
        ...,
        description="OIDC issuer URL (e.g., https://sso.example.com/auth/realms/myRealm)",
        min_length=1,
    )

    SSO_CLIENT_ID: str = Field(
        ...,
        description="Client ID registered with the identity provider",
        min_length=1,
    )

    SSO_CLIENT_SECRET: Optional[str] = Field(
        None,
        description="Client secret (optional for public clients)",
    )

    # =========================================================================
    # Application Configuration
    # =========================================================================

    SSO_BASE_URL: str = Field(
        ...,
        description="Public base URL of the application (e.g., https://app.example.com)",
        min_length=1,
    )

    SSO_APPLICATION_DOMAIN: str = Field(
        ...,
        description="Cookie domain used when clearing the SMSESSION cookie (e.g., .example.com)",
        min_length=1,
    )

    SSO_LANDING_ROUTE: str = Field(
        default="/",
        description="Path users land on after a successful login",
    )

    # =========================================================================
    # Authentication Bypass (local development only)
    # =========================================================================

    SSO_BYPASS_LOGIN: bool = Field(default=False)
    SSO_BYPASS_TOKEN_SET: bool = Field(default=False)
    SSO_BYPASS_SESSION_IDLE_REMAINING_TIME: bool = Field(default=False)

    # =========================================================================
    # Session Cookie Configuration
    # =========================================================================

    SESSION_SECRET_KEY: str = Field(
        ...,
        description="Secret key for signing the session cookie (must be cryptographically secure)",
        min_length=32,
    )

    SESSION_COOKIE_NAME: str = Field(default="session")

    SESSION_MAX_AGE_SECONDS: int = Field(
        default=14 * 24 * 60 * 60,
        description="Lifetime of the session cookie in seconds",
        ge=60,
    )

    SESSION_HTTPS_ONLY: bool = Field(
        default=True,
        description="Only send the session cookie over HTTPS",
    )

    # =========================================================================
    # JWKS Caching Configuration
    # =========================================================================

    JWKS_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache the provider's JWKS keys in seconds",
        ge=300,  # Min 5 minutes
        le=86400,  # Max 24 hours
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    LOG_LEVEL: str = Field(default="INFO")

    SSO_HOST: str = Field(default="0.0.0.0")

    SSO_PORT: int = Field(default=8080, ge=1, le=65535)

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def bypass_authentication(self) -> BypassAuthentication:
        return BypassAuthentication(
            login=self.SSO_BYPASS_LOGIN,
            token_set=self.SSO_BYPASS_TOKEN_SET,
            session_idle_remaining_time=self.SSO_BYPASS_SESSION_IDLE_REMAINING_TIME,
        )

    def to_options(self) -> SSOOptions:
        """
        Build the middleware options from these settings.

        The landing route is static: every user lands on SSO_LANDING_ROUTE.
        """
        landing_route = self.SSO_LANDING_ROUTE

        return SSOOptions(
            application_domain=self.SSO_APPLICATION_DOMAIN,
            oidc_config=OIDCConfig(
                base_url=self.SSO_BASE_URL,
                client_id=self.SSO_CLIENT_ID,
                oidc_issuer=self.SSO_OIDC_ISSUER,
                client_secret=self.SSO_CLIENT_SECRET,
            ),
            get_landing_route=lambda request: landing_route,
            bypass_authentication=self.bypass_authentication,
        )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """
        Validate that LOG_LEVEL names a standard logging level.

        Raises:
            ValueError: If the level is unknown
        """
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v = v.upper()
        if v not in allowed_levels:
            raise ValueError(f"LOG_LEVEL must be one of {allowed_levels}, got: {v}")
        return v

    @field_validator("SSO_LANDING_ROUTE")
    @classmethod
    def validate_landing_route(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"SSO_LANDING_ROUTE must be an absolute path, got: '{v}'")
        return v


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> dict:
    """
    Validate critical configuration settings and return a status report.

    Called during application startup; errors are logged, not raised.

    Returns:
        Dictionary with validation status and any warnings.
    """
    errors = []
    warnings = []

    if not settings.SSO_BASE_URL.startswith("https://"):
        warnings.append("SSO_BASE_URL is not HTTPS (the identity provider may reject the redirect URI)")

    if not settings.SSO_OIDC_ISSUER.startswith("https://"):
        errors.append("SSO_OIDC_ISSUER must be an HTTPS URL")

    if not settings.SSO_CLIENT_SECRET:
        warnings.append("SSO_CLIENT_SECRET is not set (required for confidential clients)")

    if not settings.SESSION_HTTPS_ONLY:
        warnings.append("SESSION_HTTPS_ONLY is disabled (session cookie will be sent over plain HTTP)")

    bypass = settings.bypass_authentication
    for flag, enabled in bypass.model_dump().items():
        if enabled:
            warnings.append(f"Authentication bypass enabled for '{flag}' (never use in production)")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "issuer": settings.SSO_OIDC_ISSUER,
        "base_url": settings.SSO_BASE_URL,
    }
