"""
OIDC provider client.

This module handles:
- Fetching the provider's discovery document and resolving its endpoints
- Building authorization and end-session redirect URLs
- Exchanging authorization codes at the token endpoint
- Fetching and caching the provider's JWKS
- Verifying ID token signatures and standard claims
"""

import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

import httpx
from jose import jwk, jwt
from jose.exceptions import JOSEError
from pydantic import ValidationError

from oidc_gate.auth.errors import ConfigurationError, TokenError
from oidc_gate.config import Settings
from oidc_gate.models import ProviderMetadata, TokenResponse

logger = logging.getLogger(__name__)

DISCOVERY_PATH = "/.well-known/openid-configuration"


class ProviderClient:
    """
    Endpoints, token exchange and ID token verification for one provider.

    Built once at startup (see discover()) and shared by every request. The
    only mutable state is the JWKS cache, which is replaced wholesale.
    """

    def __init__(self, settings: Settings, metadata: ProviderMetadata, http_client: httpx.AsyncClient):
        self.settings = settings
        self.metadata = metadata
        self._http = http_client
        self.logout_url = self._resolve_logout_url(settings, metadata)

        self._jwks: Optional[Dict[str, Any]] = None
        self._jwks_fetched_at: float = 0.0

    # =========================================================================
    # Discovery
    # =========================================================================

    @classmethod
    async def discover(cls, settings: Settings, http_client: httpx.AsyncClient) -> "ProviderClient":
        """
        Fetch the issuer's discovery document and build a client from it.

        Args:
            settings: Application settings
            http_client: Shared HTTP client used for all provider calls

        Returns:
            ProviderClient ready for use

        Raises:
            ConfigurationError: If the document is unreachable, malformed or
                names a different issuer
        """
        discovery_url = settings.issuer_url + DISCOVERY_PATH

        try:
            response = await http_client.get(discovery_url, timeout=settings.HTTP_TIMEOUT_SECONDS)
            response.raise_for_status()
            document = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ConfigurationError(f"failed to init OIDC provider from {discovery_url}", e)

        try:
            metadata = ProviderMetadata.model_validate(document)
        except ValidationError as e:
            raise ConfigurationError(f"failed to parse issuer ({settings.issuer_url}) discovery document", e)

        if metadata.issuer.rstrip("/") != settings.issuer_url:
            raise ConfigurationError(
                f"discovery document issuer {metadata.issuer!r} does not match "
                f"configured issuer {settings.issuer_url!r}"
            )

        client = cls(settings, metadata, http_client)
        logger.info(
            "Discovered OIDC provider",
            extra={
                "issuer": metadata.issuer,
                "authorization_endpoint": metadata.authorization_endpoint,
                "logout_url": client.logout_url,
            },
        )
        return client

    @staticmethod
    def _resolve_logout_url(settings: Settings, metadata: ProviderMetadata) -> str:
        if metadata.end_session_endpoint is None:
            logger.info(
                "Provider does not advertise end_session_endpoint, using default",
                extra={"logout_url": settings.default_logout_url},
            )
            return settings.default_logout_url

        parts = urlsplit(metadata.end_session_endpoint)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ConfigurationError(
                f"invalid end_session_endpoint for issuer {settings.issuer_url}: "
                f"{metadata.end_session_endpoint!r}"
            )
        return metadata.end_session_endpoint

    # =========================================================================
    # Redirect URLs
    # =========================================================================

    def authorization_url(self, state: str) -> str:
        """
        URL of the provider's login page for an authorization-code request.

        Args:
            state: CSRF state value, echoed back on the callback

        Returns:
            Authorization endpoint with client_id, redirect_uri, response_type,
            scope and state query parameters
        """
        params = {
            "client_id": self.settings.OIDC_CLIENT_ID,
            "redirect_uri": self.settings.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.settings.scopes_list),
            "state": state,
        }
        endpoint = self.metadata.authorization_endpoint
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(params)}"

    def end_session_url(self, params: Dict[str, str]) -> str:
        """End-session endpoint with `params` added to any query it already has."""
        parts = urlsplit(self.logout_url)
        query = parse_qsl(parts.query, keep_blank_values=True) + list(params.items())
        return urlunsplit(parts._replace(query=urlencode(query)))

    # =========================================================================
    # Token Exchange
    # =========================================================================

    def _use_basic_auth(self) -> bool:
        methods = self.metadata.token_endpoint_auth_methods_supported
        if not methods or not self.settings.OIDC_CLIENT_SECRET:
            return False
        return "client_secret_post" not in methods and "client_secret_basic" in methods

    async def exchange_code(self, code: str) -> TokenResponse:
        """
        Exchange an authorization code for tokens.

        Args:
            code: Authorization code from the callback

        Returns:
            Parsed token response; the raw ID token is in its extra fields

        Raises:
            TokenError: On network failure, provider rejection or a malformed
                response
        """
        if not code:
            raise TokenError("failed to exchange token", ValueError("missing 'code' parameter"))

        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.settings.redirect_uri,
        }
        auth = None
        if self._use_basic_auth():
            auth = httpx.BasicAuth(
                quote(self.settings.OIDC_CLIENT_ID, safe=""),
                quote(self.settings.OIDC_CLIENT_SECRET, safe=""),
            )
        else:
            payload["client_id"] = self.settings.OIDC_CLIENT_ID
            if self.settings.OIDC_CLIENT_SECRET:
                payload["client_secret"] = self.settings.OIDC_CLIENT_SECRET

        try:
            response = await self._http.post(
                self.metadata.token_endpoint,
                data=payload,
                auth=auth,
                headers={"Accept": "application/json"},
                timeout=self.settings.HTTP_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as e:
            raise TokenError("failed to exchange token", e)

        if not response.is_success:
            error_data = _json_or_empty(response)
            error_msg = (
                error_data.get("error_description")
                or error_data.get("error")
                or f"HTTP {response.status_code}"
            )
            raise TokenError("failed to exchange token", ValueError(error_msg))

        try:
            return TokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise TokenError("failed to exchange token: invalid token response", e)

    # =========================================================================
    # ID Token Verification
    # =========================================================================

    async def fetch_jwks(self, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Fetch the provider's JWKS with caching.

        Results are cached for JWKS_CACHE_SECONDS.

        Raises:
            TokenError: If the JWKS endpoint is unreachable or the response
                is invalid
        """
        now = time.monotonic()
        if (
            not force_refresh
            and self._jwks is not None
            and (now - self._jwks_fetched_at) < self.settings.JWKS_CACHE_SECONDS
        ):
            return self._jwks

        try:
            response = await self._http.get(self.metadata.jwks_uri, timeout=self.settings.HTTP_TIMEOUT_SECONDS)
            response.raise_for_status()
            jwks = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TokenError("failed to fetch provider signing keys", e)

        if not isinstance(jwks, dict) or not isinstance(jwks.get("keys"), list):
            raise TokenError("failed to fetch provider signing keys", ValueError("missing 'keys' field"))

        self._jwks = jwks
        self._jwks_fetched_at = now
        return jwks

    async def verify_id_token(self, id_token: str) -> Dict[str, Any]:
        """
        Verify an ID token's signature and standard claims.

        1. Finds the signing key by kid, refreshing the JWKS once if the key
           is unknown (key rotation)
        2. Verifies the signature with one of ID_TOKEN_ALGORITHMS
        3. Validates iss, aud, exp, nbf and iat

        Args:
            id_token: Raw ID token string

        Returns:
            Dictionary of verified claims

        Raises:
            TokenError: If the token is malformed, expired, signed by an
                unknown key or carries the wrong issuer/audience
        """
        try:
            header = jwt.get_unverified_header(id_token)
        except JOSEError as e:
            raise TokenError("failed to verify id token", e)

        algorithm = header.get("alg")
        if algorithm not in self.settings.algorithms_list:
            raise TokenError(
                "failed to verify id token",
                ValueError(f"unexpected signing algorithm {algorithm!r}"),
            )

        kid = header.get("kid")
        signing_key = _find_signing_key(await self.fetch_jwks(), kid)
        if signing_key is None:
            signing_key = _find_signing_key(await self.fetch_jwks(force_refresh=True), kid)
            if signing_key is None:
                raise TokenError(
                    "failed to verify id token",
                    ValueError(f"no signing key matching kid {kid!r} in provider JWKS"),
                )

        try:
            public_key = jwk.construct(signing_key, algorithm)
            claims = jwt.decode(
                id_token,
                public_key.to_pem().decode("utf-8"),
                algorithms=[algorithm],
                audience=self.settings.OIDC_CLIENT_ID,
                issuer=self.metadata.issuer,
                options={
                    "verify_signature": True,
                    "verify_aud": True,
                    "verify_iat": True,
                    "verify_exp": True,
                    "verify_nbf": True,
                    "verify_iss": True,
                    "verify_sub": True,
                    "verify_jti": False,
                    "verify_at_hash": False,
                    "leeway": self.settings.ID_TOKEN_LEEWAY_SECONDS,
                },
            )
        except JOSEError as e:
            raise TokenError("failed to verify id token", e)

        return claims


# =============================================================================
# Helpers
# =============================================================================

def _find_signing_key(jwks: Dict[str, Any], kid: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Pick the JWK that signed a token.

    Tokens without a kid are accepted only when the JWKS has a single
    signing key.
    """
    keys = [key for key in jwks.get("keys", []) if key.get("use", "sig") == "sig"]
    if kid is None:
        return keys[0] if len(keys) == 1 else None
    for key in keys:
        if key.get("kid") == kid:
            return key
    return None


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    if not response.headers.get("content-type", "").startswith("application/json"):
        return {}
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
