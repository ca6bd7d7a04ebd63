"""
Shared fixtures: test RSA keys, a fake OIDC provider served through
httpx.MockTransport, and a TestClient for the example application.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlsplit

import httpx
import jwt
import pytest
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import Request
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient
from jwt.algorithms import RSAAlgorithm

from oidc_gate.auth.errors import OidcError
from oidc_gate.auth.provider import ProviderClient
from oidc_gate.config import Settings
from oidc_gate.main import create_app
from oidc_gate.models import ProviderMetadata


ISSUER = "https://issuer.example.com"
CLIENT_ID = "test-client-id"
CLIENT_SECRET = "test-client-secret"
CLIENT_URL = "http://testserver"
POST_LOGOUT_URL = "http://testserver/goodbye"
TEST_KID = "test-key-id-2024"


# Test RSA key pair generation for mocking JWKS
def generate_test_keys():
    """Generate RSA key pair for testing"""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
        backend=default_backend()
    )
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )
    return private_pem.decode(), private_key.public_key()


# Generate test keys once for reuse
TEST_PRIVATE_KEY, TEST_PUBLIC_KEY = generate_test_keys()
OTHER_PRIVATE_KEY, OTHER_PUBLIC_KEY = generate_test_keys()


def create_id_token(
    kid: Optional[str] = TEST_KID,
    exp_delta_minutes: int = 60,
    private_key: str = TEST_PRIVATE_KEY,
    **overrides: Any,
) -> str:
    """
    Create an ID token signed with a test private key.

    Args:
        kid: Key ID for JWKS matching (None to omit)
        exp_delta_minutes: Token expiry in minutes (negative for expired)
        private_key: PEM key to sign with
        overrides: Claims replacing the defaults

    Returns:
        Encoded JWT string
    """
    now = datetime.now(timezone.utc)
    payload = {
        "iss": ISSUER,
        "sub": "test-user-sub-123",
        "aud": CLIENT_ID,
        "exp": now + timedelta(minutes=exp_delta_minutes),
        "iat": now,
        "email": "user@example.com",
        "name": "Test User",
    }
    payload.update(overrides)

    headers = {"kid": kid} if kid is not None else {}
    return jwt.encode(payload, private_key, algorithm="RS256", headers=headers)


def create_jwks(kid: str = TEST_KID, public_key=TEST_PUBLIC_KEY) -> Dict[str, Any]:
    """JWKS document containing one RSA signing key."""
    key = RSAAlgorithm.to_jwk(public_key, as_dict=True)
    key["kid"] = kid
    key["use"] = "sig"
    key["alg"] = "RS256"
    return {"keys": [key]}


def discovery_document(**overrides: Any) -> Dict[str, Any]:
    document = {
        "issuer": ISSUER,
        "authorization_endpoint": f"{ISSUER}/authorize",
        "token_endpoint": f"{ISSUER}/token",
        "jwks_uri": f"{ISSUER}/jwks",
        "end_session_endpoint": f"{ISSUER}/logout",
        "response_types_supported": ["code"],
    }
    document.update(overrides)
    return {key: value for key, value in document.items() if value is not None}


class FakeProvider:
    """
    In-process identity provider behind httpx.MockTransport.

    Serves discovery, JWKS and token endpoints from mutable attributes so
    tests can change what the provider answers.
    """

    def __init__(self):
        self.discovery = discovery_document()
        self.discovery_status = 200
        self.jwks = create_jwks()
        self.token_status = 200
        self.token_payload: Optional[Dict[str, Any]] = None
        self.requests: List[httpx.Request] = []

    def default_token_payload(self) -> Dict[str, Any]:
        return {
            "access_token": "mock-access-token",
            "refresh_token": "mock-refresh-token",
            "token_type": "Bearer",
            "expires_in": 3600,
            "id_token": create_id_token(),
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/.well-known/openid-configuration":
            return httpx.Response(self.discovery_status, json=self.discovery)
        if path == "/jwks":
            return httpx.Response(200, json=self.jwks)
        if path == "/token":
            payload = self.token_payload if self.token_payload is not None else self.default_token_payload()
            return httpx.Response(self.token_status, json=payload)
        return httpx.Response(404, json={"error": "not_found"})

    def calls(self, path: str) -> List[httpx.Request]:
        return [request for request in self.requests if request.url.path == path]


class RecordingErrorHandler:
    """Error handler that records every error it is given."""

    def __init__(self):
        self.calls: List[OidcError] = []

    def __call__(self, request: Request, error: OidcError) -> PlainTextResponse:
        self.calls.append(error)
        return PlainTextResponse(error.describe(), status_code=error.status_code)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        OIDC_CLIENT_ID=CLIENT_ID,
        OIDC_CLIENT_SECRET=CLIENT_SECRET,
        OIDC_ISSUER=ISSUER,
        OIDC_CLIENT_URL=CLIENT_URL,
        OIDC_POST_LOGOUT_URL=POST_LOGOUT_URL,
        SESSION_SECRET_KEY="test-session-secret-1234567890123456",
        SESSION_HTTPS_ONLY=False,
    )


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def http_client(fake_provider) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(fake_provider))


@pytest.fixture
def provider(settings, fake_provider, http_client) -> ProviderClient:
    metadata = ProviderMetadata.model_validate(fake_provider.discovery)
    return ProviderClient(settings, metadata, http_client)


@pytest.fixture
def error_handler() -> RecordingErrorHandler:
    return RecordingErrorHandler()


def add_session_routes(app):
    """Unprotected routes exposing the raw session for assertions."""

    @app.get("/_session")
    async def read_session(request: Request):
        return dict(request.session)

    @app.post("/_session")
    async def write_session(request: Request):
        request.session.update(await request.json())
        return dict(request.session)


@pytest.fixture
def app(settings, provider, error_handler):
    app = create_app(settings, provider=provider, error_handler=error_handler)
    add_session_routes(app)
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


def query_of(url: str) -> Dict[str, List[str]]:
    return parse_qs(urlsplit(url).query)


def start_login(client: TestClient, path: str = "/protected") -> str:
    """Hit a protected route unauthenticated and return the issued state."""
    response = client.get(path, follow_redirects=False)
    assert response.status_code == 302
    return query_of(response.headers["location"])["state"][0]


def login(client: TestClient, path: str = "/protected", code: str = "mock-auth-code") -> httpx.Response:
    """Run the whole authorization-code round trip and return the callback response."""
    state = start_login(client, path)
    return client.get(
        "/oidc-callback",
        params={"state": state, "code": code},
        follow_redirects=False,
    )
