"""
FastAPI Application Factory
===========================

Example service protected by the OIDC gate.

Routes:
    - /oidc-callback : Provider redirect target (OIDC_CALLBACK_PATH)
    - /logout        : Clears the session, ends the provider session (OIDC_LOGOUT_PATH)
    - /, /protected  : Protected; return the visitor's ID token claims
    - /health        : Health check, unprotected

Environment Variables Required:
    - OIDC_CLIENT_ID, OIDC_CLIENT_SECRET: Client registration at the provider
    - OIDC_ISSUER: Issuer URL (discovery document at /.well-known/openid-configuration)
    - OIDC_CLIENT_URL: Base URL of this service
    - OIDC_POST_LOGOUT_URL: Landing page after logout
    - SESSION_SECRET_KEY: Secret for signing the session cookie
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn oidc_gate.main:create_app --factory --reload --port 8080

    Direct:
        python -m oidc_gate.main
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from oidc_gate import __version__
from oidc_gate.auth import ConfigurationError, OidcAuth
from oidc_gate.auth.errors import ErrorHandler
from oidc_gate.auth.handlers import LogoutParamsBuilder
from oidc_gate.auth.provider import ProviderClient
from oidc_gate.config import Settings, get_settings, validate_configuration
from oidc_gate.models import OidcSession

logger = logging.getLogger(__name__)


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def create_app(
    settings: Optional[Settings] = None,
    provider: Optional[ProviderClient] = None,
    error_handler: Optional[ErrorHandler] = None,
    logout_params: Optional[LogoutParamsBuilder] = None,
) -> FastAPI:
    """
    Application factory function.

    Creates the FastAPI application with:
        - Session middleware (signed cookie)
        - OIDC callback and logout routes
        - Protected example routes
        - Lifespan performing provider discovery

    Args:
        settings: Settings to use instead of the environment
        provider: Pre-built provider client; skips discovery at startup
        error_handler: Hook turning authentication errors into responses
        logout_params: Builder for end-session query parameters

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()
    oidc = OidcAuth(
        settings,
        provider,
        error_handler=error_handler,
        logout_params=logout_params,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup: validate configuration and discover the provider. A
        discovery failure raises and the server never starts serving.

        Shutdown: close the shared HTTP client.
        """
        setup_logging(settings.LOG_LEVEL)

        report = validate_configuration(settings)
        for warning in report["warnings"]:
            logger.warning(f"Configuration warning: {warning}")
        if not report["valid"]:
            raise ConfigurationError("invalid configuration: " + "; ".join(report["errors"]))

        async with httpx.AsyncClient() as http_client:
            await oidc.startup(http_client)
            logger.info(
                "Starting OIDC gate service",
                extra={"issuer": report["issuer"], "redirect_uri": report["redirect_uri"]},
            )

            yield

            logger.info("Shutting down OIDC gate service")

    app = FastAPI(
        title="OIDC Gate",
        description="OpenID Connect login in front of protected routes",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.SESSION_SECRET_KEY,
        session_cookie=settings.SESSION_COOKIE_NAME,
        max_age=settings.SESSION_MAX_AGE_SECONDS,
        same_site="lax",
        https_only=settings.SESSION_HTTPS_ONLY,
    )

    oidc.install(app)
    app.state.oidc = oidc

    @app.get("/health", tags=["System"])
    async def health_check() -> Dict[str, str]:
        return {"status": "ok", "service": "oidc-gate", "version": __version__}

    @app.get("/", tags=["Protected"])
    @app.get("/protected", tags=["Protected"])
    async def protected(
        request: Request,
        session: OidcSession = Depends(oidc.require_login),
    ) -> Dict[str, Any]:
        """Return the logged-in visitor's ID token claims."""
        return {
            "path": request.url.path,
            "authorized": session.authorized,
            "claims": oidc.claims(request),
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Log unhandled errors and return a standardized error response.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__,
            },
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={"error": "internal_server_error", "message": "An unexpected error occurred"},
        )

    return app


if __name__ == "__main__":
    settings = get_settings()

    uvicorn.run(
        "oidc_gate.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )
