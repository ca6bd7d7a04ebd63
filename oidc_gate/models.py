"""
Data Models Module

Pydantic models shared by the authentication package:
- Session record stored per visitor (serialized by alias to the session store)
- Provider discovery metadata
- Token endpoint response
"""

from typing import Optional, Dict, Any, List

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Session Models
# ============================================================================

class OidcSession(BaseModel):
    """
    Authentication state kept in the visitor's session.

    Field aliases are the keys used in the session store.
    """

    model_config = ConfigDict(populate_by_name=True)

    authorized: bool = Field(default=False, alias="oidcAuthorized")
    state: Optional[str] = Field(default=None, alias="oidcState")
    original_request_url: Optional[str] = Field(default=None, alias="oidcOriginalRequestUrl")
    claims: Optional[str] = Field(default=None, alias="oidcClaims")
    id_token: Optional[str] = Field(default=None, alias="oidcIDToken")

    @classmethod
    def store_keys(cls) -> List[str]:
        return [field.alias for field in cls.model_fields.values()]


# ============================================================================
# Provider Models
# ============================================================================

class ProviderMetadata(BaseModel):
    """Subset of the OpenID Provider discovery document used by the gate."""

    model_config = ConfigDict(extra="allow")

    issuer: str = Field(..., description="Issuer identifier")
    authorization_endpoint: str = Field(..., description="Authorization endpoint URL")
    token_endpoint: str = Field(..., description="Token endpoint URL")
    jwks_uri: str = Field(..., description="JWKS document URL")
    end_session_endpoint: Optional[str] = Field(None, description="RP-initiated logout endpoint")
    token_endpoint_auth_methods_supported: Optional[List[str]] = Field(
        None, description="Client authentication methods the token endpoint accepts"
    )


class TokenResponse(BaseModel):
    """
    Token endpoint response.

    Anything beyond the OAuth2 fields (including id_token) is kept as an
    extra field.
    """

    model_config = ConfigDict(extra="allow")

    access_token: str = Field(..., description="OAuth2 access token")
    token_type: str = Field(default="Bearer", description="Token type")
    expires_in: Optional[int] = Field(None, description="Access token lifetime in seconds")
    refresh_token: Optional[str] = Field(None, description="Refresh token if issued")

    def extra(self, key: str) -> Any:
        """Return a non-standard field from the response, or None."""
        extras: Dict[str, Any] = self.model_extra or {}
        return extras.get(key)
