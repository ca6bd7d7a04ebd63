"""
Configuration module for the OIDC authentication gate.

This module uses Pydantic Settings to load and validate environment variables
for the OpenID Connect client registration, the session cookie, token
verification and the HTTP server.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_LOGOUT_SUFFIX = "/protocol/openid-connect/logout"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Everything the gate needs to talk to the identity provider and to keep
    per-visitor session state is defined here. Settings are immutable once
    loaded.
    """

    # =========================================================================
    # OIDC Client Registration
    # =========================================================================

    OIDC_CLIENT_ID: str = Field(
        ...,
        description="Client ID issued by the OIDC provider",
        min_length=1,
    )

    OIDC_CLIENT_SECRET: str = Field(
        default="",
        description="Client secret issued by the OIDC provider (empty for public clients)",
    )

    OIDC_ISSUER: str = Field(
        ...,
        description="Issuer URL, e.g. https://accounts.google.com. "
        "Appending /.well-known/openid-configuration must return the discovery document",
        min_length=1,
    )

    OIDC_CLIENT_URL: str = Field(
        ...,
        description="Base URL of this service, e.g. https://app.example.com",
        min_length=1,
    )

    OIDC_SCOPES: str = Field(
        default="openid,profile,email",
        description="Comma-separated OAuth scopes; must include 'openid'",
    )

    # =========================================================================
    # Routes
    # =========================================================================

    OIDC_CALLBACK_PATH: str = Field(
        default="/oidc-callback",
        description="Path the provider redirects back to, mounted under OIDC_CLIENT_URL",
    )

    OIDC_LOGOUT_PATH: str = Field(
        default="/logout",
        description="Path of the logout route",
    )

    OIDC_POST_LOGOUT_URL: str = Field(
        ...,
        description="Where visitors land after logging out",
        min_length=1,
    )

    # =========================================================================
    # State & Token Verification
    # =========================================================================

    OIDC_STATE_LENGTH: int = Field(
        default=16,
        description="Length of the CSRF state value sent to the provider",
        ge=16,
        le=128,
    )

    ID_TOKEN_ALGORITHMS: str = Field(
        default="RS256",
        description="Comma-separated list of accepted ID token signing algorithms",
    )

    ID_TOKEN_LEEWAY_SECONDS: int = Field(
        default=10,
        description="Clock skew tolerance when checking exp/nbf/iat",
        ge=0,
        le=300,
    )

    JWKS_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache the provider's JWKS keys in seconds",
        ge=60,
        le=86400,
    )

    HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for calls to the provider (discovery, token, JWKS)",
        gt=0,
    )

    # =========================================================================
    # Session Cookie
    # =========================================================================

    SESSION_SECRET_KEY: str = Field(
        ...,
        description="Secret used to sign the session cookie (must be cryptographically secure)",
        min_length=32,
    )

    SESSION_COOKIE_NAME: str = Field(
        default="session",
        description="Name of the session cookie",
    )

    SESSION_MAX_AGE_SECONDS: int = Field(
        default=14 * 24 * 3600,
        description="Session cookie lifetime in seconds",
        ge=60,
    )

    SESSION_HTTPS_ONLY: bool = Field(
        default=True,
        description="Only send the session cookie over HTTPS",
    )

    SESSION_MAX_COOKIE_BYTES: int = Field(
        default=4096,
        description="Largest session cookie the gate will write; browsers drop bigger ones. "
        "0 disables the check (for server-side session stores)",
        ge=0,
    )

    # =========================================================================
    # Server
    # =========================================================================

    HOST: str = Field(default="0.0.0.0", description="Host to bind the server")

    PORT: int = Field(default=8080, description="Port to bind the server", ge=1, le=65535)

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        frozen=True,
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def scopes_list(self) -> List[str]:
        """
        Parse and return OIDC_SCOPES as a clean list.

        Returns:
            List of scope strings without whitespace, in configured order.
        """
        return [scope.strip() for scope in self.OIDC_SCOPES.split(",") if scope.strip()]

    @property
    def algorithms_list(self) -> List[str]:
        return [alg.strip() for alg in self.ID_TOKEN_ALGORITHMS.split(",") if alg.strip()]

    @property
    def issuer_url(self) -> str:
        """Issuer URL without trailing slash."""
        return self.OIDC_ISSUER.rstrip("/")

    @property
    def redirect_uri(self) -> str:
        """
        Absolute URL of the callback route, as registered with the provider.

        Returns:
            OIDC_CLIENT_URL with OIDC_CALLBACK_PATH appended.
        """
        return self.OIDC_CLIENT_URL.rstrip("/") + self.OIDC_CALLBACK_PATH

    @property
    def default_logout_url(self) -> str:
        """End-session endpoint used when discovery does not advertise one."""
        return self.issuer_url + DEFAULT_LOGOUT_SUFFIX

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("OIDC_SCOPES")
    @classmethod
    def validate_scopes(cls, v: str) -> str:
        """
        Validate that the requested scopes include 'openid'.

        Raises:
            ValueError: If the OpenID scope is missing
        """
        scopes = [s.strip() for s in v.split(",") if s.strip()]
        if "openid" not in scopes:
            raise ValueError(f"OIDC_SCOPES must include 'openid', got: {v!r}")
        return v

    @field_validator("OIDC_CALLBACK_PATH", "OIDC_LOGOUT_PATH")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"Route paths must start with '/', got: {v!r}")
        return v

    @field_validator("OIDC_ISSUER", "OIDC_CLIENT_URL", "OIDC_POST_LOGOUT_URL")
    @classmethod
    def validate_absolute_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Expected an absolute http(s) URL, got: {v!r}")
        return v

    @field_validator("ID_TOKEN_ALGORITHMS")
    @classmethod
    def validate_algorithms(cls, v: str) -> str:
        """
        Only asymmetric algorithms are accepted; the provider's keys come
        from its public JWKS.
        """
        allowed = {"RS256", "RS384", "RS512", "ES256", "ES384", "ES512", "PS256", "PS384", "PS512"}
        algorithms = [a.strip() for a in v.split(",") if a.strip()]
        if not algorithms:
            raise ValueError("ID_TOKEN_ALGORITHMS must name at least one algorithm")
        unsupported = [a for a in algorithms if a not in allowed]
        if unsupported:
            raise ValueError(f"Unsupported ID token algorithms: {unsupported}")
        return v


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    The settings are loaded once during the application lifecycle.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()


def validate_configuration(settings: Settings) -> dict:
    """
    Check settings for risky but valid combinations.

    Called during startup; the result is logged.

    Returns:
        Dictionary with validation status, errors and warnings.
    """
    errors = []
    warnings = []

    if not settings.OIDC_CLIENT_SECRET:
        warnings.append("OIDC_CLIENT_SECRET is not set (public client)")

    if not settings.SESSION_HTTPS_ONLY:
        warnings.append("SESSION_HTTPS_ONLY is disabled; session cookie may be sent over plain HTTP")

    if settings.OIDC_CLIENT_URL.startswith("http://") and "localhost" not in settings.OIDC_CLIENT_URL:
        warnings.append("OIDC_CLIENT_URL is not HTTPS")

    if settings.OIDC_CALLBACK_PATH == settings.OIDC_LOGOUT_PATH:
        errors.append("OIDC_CALLBACK_PATH and OIDC_LOGOUT_PATH must differ")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "issuer": settings.issuer_url,
        "redirect_uri": settings.redirect_uri,
    }
