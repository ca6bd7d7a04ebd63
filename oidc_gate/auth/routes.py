"""
FastAPI wiring for the OIDC gate.

OidcAuth exposes the handlers to an application:
- a router with the callback and logout routes
- the require_login dependency for protected routes and routers
- the exception handler that sends the gate's redirects and error pages
"""

import json
import logging
from typing import Any, Dict, Optional

import httpx
from fastapi import APIRouter, FastAPI
from fastapi.requests import Request
from fastapi.responses import Response

from oidc_gate.auth.errors import (
    AuthAbort,
    ConfigurationError,
    ErrorHandler,
    OidcError,
    SessionError,
    default_error_handler,
)
from oidc_gate.auth.handlers import (
    LogoutParamsBuilder,
    OidcContext,
    authenticate,
    default_logout_params,
    fail_request,
    handle_callback,
    handle_logout,
)
from oidc_gate.auth.provider import ProviderClient
from oidc_gate.auth.session import SessionAccessor
from oidc_gate.auth.tokens import StateGenerator
from oidc_gate.config import Settings
from oidc_gate.models import OidcSession

logger = logging.getLogger(__name__)


class OidcAuth:
    """
    Protects routes of a FastAPI application with an OIDC login.

    Usage:
        oidc = OidcAuth(settings)
        oidc.install(app)

        @app.get("/private")
        async def private(session: OidcSession = Depends(oidc.require_login)):
            ...

    The provider is discovered in startup() unless one is passed in.
    """

    def __init__(
        self,
        settings: Settings,
        provider: Optional[ProviderClient] = None,
        *,
        generator: Optional[StateGenerator] = None,
        sessions: Optional[SessionAccessor] = None,
        error_handler: Optional[ErrorHandler] = None,
        logout_params: Optional[LogoutParamsBuilder] = None,
    ):
        self.settings = settings
        self.generator = generator or StateGenerator()
        self.sessions = sessions or SessionAccessor(
            settings.SESSION_COOKIE_NAME,
            settings.SESSION_MAX_COOKIE_BYTES,
        )
        self.error_handler = error_handler or default_error_handler
        self.logout_params = logout_params or default_logout_params
        self._context: Optional[OidcContext] = None
        if provider is not None:
            self._bind(provider)

        self.router = APIRouter(tags=["authentication"])
        self.router.add_api_route(
            settings.OIDC_CALLBACK_PATH,
            self.callback,
            methods=["GET", "POST"],
            include_in_schema=False,
        )
        self.router.add_api_route(settings.OIDC_LOGOUT_PATH, self.logout, methods=["GET"])

    def _bind(self, provider: ProviderClient) -> None:
        self._context = OidcContext(
            settings=self.settings,
            provider=provider,
            generator=self.generator,
            sessions=self.sessions,
            error_handler=self.error_handler,
            logout_params=self.logout_params,
        )

    @property
    def context(self) -> OidcContext:
        if self._context is None:
            raise ConfigurationError("OIDC provider has not been initialized; call startup() first")
        return self._context

    async def startup(self, http_client: httpx.AsyncClient) -> None:
        """
        Discover the provider if none was given.

        Raises:
            ConfigurationError: If discovery fails. The application must not
                start serving.
        """
        if self._context is not None:
            return
        self._bind(await ProviderClient.discover(self.settings, http_client))
        logger.info(
            "OIDC gate ready",
            extra={"callback_path": self.settings.OIDC_CALLBACK_PATH, "logout_path": self.settings.OIDC_LOGOUT_PATH},
        )

    def install(self, app: FastAPI) -> None:
        """
        Mount the callback/logout routes on `app`, plus exception handlers
        for AuthAbort and for OidcErrors raised inside route bodies (e.g. by
        claims()), which go through the configured error handler.
        """
        app.include_router(self.router)
        app.add_exception_handler(AuthAbort, _send_abort_response)
        app.add_exception_handler(OidcError, self._send_error_response)

    async def _send_error_response(self, request: Request, exc: OidcError) -> Response:
        return await fail_request(request, self.context, exc)

    # =========================================================================
    # Routes & Dependencies
    # =========================================================================

    async def require_login(self, request: Request) -> OidcSession:
        """
        Dependency guarding a protected route.

        Returns:
            The visitor's session record

        Raises:
            AuthAbort: Carrying the login redirect or error page
        """
        result = await authenticate(request, self.context)
        if isinstance(result, Response):
            raise AuthAbort(result)
        return result

    async def callback(self, request: Request) -> Response:
        return await handle_callback(request, self.context)

    async def logout(self, request: Request) -> Response:
        return await handle_logout(request, self.context)

    def claims(self, request: Request) -> Dict[str, Any]:
        """
        Decoded ID token claims of the current visitor, or {} if not logged in.

        Raises:
            SessionError: If the stored claims are not a JSON object
        """
        record = self.sessions.load(request)
        if not record.authorized or not record.claims:
            return {}
        try:
            claims = json.loads(record.claims)
        except ValueError as e:
            raise SessionError("failed to read session claims", e)
        if not isinstance(claims, dict):
            raise SessionError("failed to read session claims")
        return claims


async def _send_abort_response(request: Request, exc: AuthAbort) -> Response:
    return exc.response
