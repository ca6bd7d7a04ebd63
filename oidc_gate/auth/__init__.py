"""
Authentication Package

Protects routes behind an OpenID Connect authorization-code login, keeping
per-visitor state in the session.

Modules:
- routes: OidcAuth, the FastAPI wiring (callback/logout routes, require_login)
- handlers: the gate, callback and logout state machine
- provider: discovery, token exchange and ID token verification
- session: typed access to the session's auth fields
- tokens: CSRF state generation
- errors: error taxonomy and the default error page

The authentication flow:
1. A protected route is requested without a login; the gate stores a fresh
   state and redirects to the provider
2. The provider redirects back to the callback path with state and code
3. The callback checks the state, exchanges the code, verifies the ID token
   and marks the session authorized
4. The visitor is sent back to the URL they first asked for
"""

from .errors import AuthAbort, ConfigurationError, OidcError, SessionError, StateError, TokenError
from .routes import OidcAuth

__all__ = [
    "OidcAuth",
    "AuthAbort",
    "OidcError",
    "ConfigurationError",
    "StateError",
    "TokenError",
    "SessionError",
]
