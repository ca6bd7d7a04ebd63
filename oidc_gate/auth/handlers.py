"""
Authentication state machine.

Three plain async functions over (request, OidcContext):

- authenticate:    the gate in front of protected routes
- handle_callback: completes the authorization-code flow
- handle_logout:   clears the session and optionally ends the provider session

Every step that can fail raises an OidcError; the first one ends the request
through the configured error handler.
"""

import inspect
import json
import logging
import secrets
from dataclasses import dataclass
from typing import Callable, Dict, Union

from fastapi import status
from fastapi.requests import Request
from fastapi.responses import RedirectResponse, Response

from oidc_gate.auth.errors import ErrorHandler, OidcError, StateError, TokenError
from oidc_gate.auth.provider import ProviderClient
from oidc_gate.auth.session import SessionAccessor
from oidc_gate.auth.tokens import StateGenerator
from oidc_gate.config import Settings
from oidc_gate.models import OidcSession

logger = logging.getLogger(__name__)

LogoutParamsBuilder = Callable[[str, str], Dict[str, str]]


def default_logout_params(post_logout_url: str, id_token: str) -> Dict[str, str]:
    """
    Query parameters for RP-initiated logout.

    Follows the common OIDC convention. Some providers name these
    differently (or want client_id too); pass another builder to OidcAuth
    for those.
    """
    return {
        "post_logout_redirect_uri": post_logout_url,
        "id_token_hint": id_token,
    }


@dataclass(frozen=True)
class OidcContext:
    """Everything the handlers need, built once and shared by all requests."""

    settings: Settings
    provider: ProviderClient
    generator: StateGenerator
    sessions: SessionAccessor
    error_handler: ErrorHandler
    logout_params: LogoutParamsBuilder = default_logout_params


# =============================================================================
# Gate
# =============================================================================

async def authenticate(request: Request, ctx: OidcContext) -> Union[OidcSession, Response]:
    """
    Decide whether a request may reach a protected route.

    Authorized sessions (and the callback path itself) pass through after
    the stored ID token, if any, is verified again. Anything else gets a
    fresh state and a redirect to the provider's login page.

    Returns:
        The visitor's session record when the request may proceed, otherwise
        the response to send (login redirect or error page)
    """
    try:
        record = ctx.sessions.load(request)

        if record.authorized or _route_path(request) == ctx.settings.OIDC_CALLBACK_PATH:
            if record.id_token:
                await ctx.provider.verify_id_token(record.id_token)
            return record

        state = ctx.generator.generate(ctx.settings.OIDC_STATE_LENGTH)
        ctx.sessions.save(
            request,
            record.model_copy(
                update={
                    "authorized": False,
                    "state": state,
                    "original_request_url": _request_target(request),
                    "id_token": None,
                }
            ),
        )
    except OidcError as e:
        return await fail_request(request, ctx, e)

    logger.info("Redirecting unauthenticated request to provider", extra={"path": request.url.path})
    return RedirectResponse(ctx.provider.authorization_url(state), status_code=status.HTTP_302_FOUND)


# =============================================================================
# Callback
# =============================================================================

async def handle_callback(request: Request, ctx: OidcContext) -> Response:
    """
    Handle the provider's redirect back to the callback path.

    1. Checks the returned state against the one stored in the session
    2. Exchanges the authorization code for tokens
    3. Verifies the ID token and stores it with its claims
    4. Redirects to the URL the visitor originally asked for

    Access and refresh tokens are discarded; only the ID token and its
    claims are kept in the session.
    """
    params = request.query_params
    try:
        record = ctx.sessions.load(request)
        if not record.state:
            raise StateError("failed to parse state")

        if not secrets.compare_digest(params.get("state", "").encode(), record.state.encode()):
            raise StateError("get 'state' param didn't match local 'state' value")

        if params.get("error"):
            raise TokenError(
                "provider returned an error",
                ValueError(params.get("error_description") or params["error"]),
            )

        tokens = await ctx.provider.exchange_code(params.get("code", ""))

        raw_id_token = tokens.extra("id_token")
        if not isinstance(raw_id_token, str) or not raw_id_token:
            raise TokenError("no id_token field in oauth2 token")

        claims = await ctx.provider.verify_id_token(raw_id_token)

        try:
            claims_json = json.dumps(claims)
        except (TypeError, ValueError) as e:
            raise TokenError("failed to marshal id token claims", e)

        original_request_url = record.original_request_url
        if not original_request_url:
            raise StateError("failed to parse originalRequestUrl")

        ctx.sessions.save(
            request,
            OidcSession(
                authorized=True,
                state=None,
                original_request_url=None,
                claims=claims_json,
                id_token=raw_id_token,
            ),
        )
    except OidcError as e:
        return await fail_request(request, ctx, e)

    logger.info("OIDC login completed", extra={"issuer": claims.get("iss")})
    return RedirectResponse(original_request_url, status_code=status.HTTP_302_FOUND)


# =============================================================================
# Logout
# =============================================================================

async def handle_logout(request: Request, ctx: OidcContext) -> Response:
    """
    Clear the session's auth state.

    Without a stored ID token this is a local logout straight to the
    post-logout URL. With one, the visitor is sent to the provider's
    end-session endpoint with the token as id_token_hint so the provider can
    end its own session too.
    """
    try:
        raw_id_token = ctx.sessions.load(request).id_token
        ctx.sessions.save(request, OidcSession())
    except OidcError as e:
        return await fail_request(request, ctx, e)

    post_logout_url = ctx.settings.OIDC_POST_LOGOUT_URL
    if not raw_id_token:
        logger.info("Local logout")
        return RedirectResponse(post_logout_url, status_code=status.HTTP_302_FOUND)

    logger.info("Logout via provider end-session endpoint")
    end_session_url = ctx.provider.end_session_url(ctx.logout_params(post_logout_url, raw_id_token))
    return RedirectResponse(end_session_url, status_code=status.HTTP_302_FOUND)


# =============================================================================
# Helpers
# =============================================================================

def _request_target(request: Request) -> str:
    """
    Path and query of the request as sent, used as the post-login redirect.

    The raw path keeps percent-escapes (%2F, %3F) so the redirect lands on
    the same resource. Leading slashes and backslashes collapse to one "/"
    so the target can never be a protocol-relative URL.
    """
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else request.url.path
    path = "/" + path.lstrip("/\\")
    if request.url.query:
        return f"{path}?{request.url.query}"
    return path


def _route_path(request: Request) -> str:
    """Request path relative to the application's mount point (root_path)."""
    path = request.scope["path"]
    root_path = request.scope.get("root_path", "")
    if root_path and path.startswith(root_path + "/"):
        return path[len(root_path):]
    return path


async def fail_request(request: Request, ctx: OidcContext, error: OidcError) -> Response:
    """Record the error and let the configured handler build the response."""
    logger.warning(
        f"OIDC request failed: {error.describe()}",
        extra={"path": request.url.path, "error_type": type(error).__name__},
    )
    request.state.oidc_error = error

    response = ctx.error_handler(request, error)
    if inspect.isawaitable(response):
        response = await response
    return response
