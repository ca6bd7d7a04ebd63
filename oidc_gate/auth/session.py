"""
Session State Accessor
======================

Typed load/save of the visitor's authentication state.

The session store itself is whatever populates ``request.scope["session"]``
(Starlette's SessionMiddleware by default, which persists it as a signed
cookie when the response is sent). This module only reads and writes the
fixed set of keys described by OidcSession.
"""

import json
import logging

from fastapi.requests import Request
from pydantic import ValidationError

from oidc_gate.auth.errors import SessionError
from oidc_gate.models import OidcSession

logger = logging.getLogger(__name__)

# itsdangerous TimestampSigner suffix: ".<timestamp>.<signature>"
SIGNATURE_OVERHEAD = 40


class SessionAccessor:
    """
    Reads and writes OidcSession records against the request's session.

    Stateless; one instance is shared by all requests.

    Args:
        cookie_name: Name of the session cookie, counted in its size
        max_cookie_bytes: Largest cookie (name and value) a save may
            produce; 0 disables the check
    """

    def __init__(self, cookie_name: str = "session", max_cookie_bytes: int = 4096):
        self.cookie_name = cookie_name
        self.max_cookie_bytes = max_cookie_bytes

    def _store(self, request: Request) -> dict:
        if "session" not in request.scope:
            raise SessionError("session store unavailable: SessionMiddleware is not installed")
        return request.scope["session"]

    def cookie_size(self, store: dict) -> int:
        """
        Size of the cookie SessionMiddleware would write for `store`:
        base64 of the JSON payload plus the signature suffix.
        """
        payload = json.dumps(store).encode("utf-8")
        encoded = 4 * ((len(payload) + 2) // 3)
        return len(self.cookie_name) + 1 + encoded + SIGNATURE_OVERHEAD

    def load(self, request: Request) -> OidcSession:
        """
        Load the authentication state for this visitor.

        Missing keys load as their defaults (unauthorized, nothing pending).

        Raises:
            SessionError: If the store is unavailable or holds values of the
                wrong type
        """
        store = self._store(request)
        values = {key: store[key] for key in OidcSession.store_keys() if key in store}
        try:
            return OidcSession.model_validate(values)
        except ValidationError as e:
            raise SessionError("failed to read session", e)

    def save(self, request: Request, record: OidcSession) -> None:
        """
        Persist the record into the visitor's session.

        Fields that are None are removed from the store. Keys not owned by
        OidcSession are left alone. The store is only modified when the
        whole update fits.

        Raises:
            SessionError: If the store is unavailable, the values cannot be
                serialized, or the resulting cookie would exceed
                max_cookie_bytes
        """
        store = self._store(request)
        updated = dict(store)
        for key, value in record.model_dump(by_alias=True).items():
            if value is None:
                updated.pop(key, None)
            else:
                updated[key] = value

        try:
            size = self.cookie_size(updated)
        except (TypeError, ValueError) as e:
            raise SessionError("failed to save session", e)

        if self.max_cookie_bytes and size > self.max_cookie_bytes:
            logger.warning(
                "Session exceeds cookie size limit",
                extra={"size": size, "limit": self.max_cookie_bytes},
            )
            raise SessionError(
                "session too large for cookie store",
                ValueError(f"{size} bytes > {self.max_cookie_bytes}"),
            )

        store.clear()
        store.update(updated)

        logger.debug(
            "Saved OIDC session state",
            extra={"authorized": record.authorized, "pending_login": record.state is not None},
        )
