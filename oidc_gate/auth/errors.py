"""
Authentication errors and the default error page.

Every request-scoped failure in the gate, callback or logout flow is one of
the OidcError subclasses below. The configured error handler turns it into
the response that ends the request.
"""

import html
from typing import Awaitable, Callable, Optional, Union

from fastapi import status
from fastapi.requests import Request
from fastapi.responses import HTMLResponse, Response


# =============================================================================
# Exceptions
# =============================================================================

class OidcError(Exception):
    """Base exception for OIDC authentication errors"""

    status_code: int = status.HTTP_400_BAD_REQUEST
    title: str = "Authentication Error"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.message = message
        self.cause = cause
        super().__init__(self.describe())

    def describe(self) -> str:
        """Message including the underlying cause, if any."""
        if self.cause is None:
            return self.message
        return f"{self.message} [{self.cause}]"


class ConfigurationError(OidcError):
    """Provider discovery or settings are unusable. Fatal at startup."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    title = "Configuration Error"


class StateError(OidcError):
    """Missing or mismatched CSRF state, or missing original request URL."""

    status_code = status.HTTP_400_BAD_REQUEST
    title = "Security Error"


class TokenError(OidcError):
    """Token exchange, ID token verification or claims handling failed."""

    status_code = status.HTTP_401_UNAUTHORIZED
    title = "Token Verification Failed"


class SessionError(OidcError):
    """The session could not be read or persisted."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    title = "Session Error"


class AuthAbort(Exception):
    """
    Raised by the require_login dependency to end a request early.

    Carries the response (login redirect or error page) to send instead of
    running the protected route.
    """

    def __init__(self, response: Response):
        self.response = response
        super().__init__(f"request aborted with status {response.status_code}")


ErrorHandler = Callable[[Request, OidcError], Union[Response, Awaitable[Response]]]


# =============================================================================
# Default Error Handler
# =============================================================================

def default_error_handler(request: Request, error: OidcError) -> Response:
    """
    Render an HTML error page for an authentication failure.

    The cause is logged by the caller; the page only shows the short message.
    """
    return _render_error_page(
        title=error.title,
        message=error.message,
        status_code=error.status_code,
    )


def _render_error_page(title: str, message: str, status_code: int = 400) -> HTMLResponse:
    """
    Render error page for authentication failures.

    Args:
        title: Error title
        message: Error message (no tokens or PII)
        status_code: HTTP status code

    Returns:
        HTMLResponse with error information
    """
    html_content = f"""
    <!DOCTYPE html>
    <html lang="en">
    <head>
        <meta charset="UTF-8">
        <meta name="viewport" content="width=device-width, initial-scale=1.0">
        <title>{html.escape(title)}</title>
        <style>
            body {{
                font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Helvetica, Arial, sans-serif;
                display: flex;
                align-items: center;
                justify-content: center;
                min-height: 100vh;
                margin: 0;
                background: #f3f4f6;
            }}
            .container {{
                background: white;
                border-radius: 12px;
                padding: 40px;
                max-width: 500px;
                box-shadow: 0 10px 40px rgba(0,0,0,0.1);
                text-align: center;
            }}
            h1 {{ color: #1f2937; font-size: 24px; margin-bottom: 16px; }}
            .message {{ color: #6b7280; font-size: 16px; line-height: 1.6; }}
        </style>
    </head>
    <body>
        <div class="container">
            <h1>{html.escape(title)}</h1>
            <p class="message">{html.escape(message)}</p>
        </div>
    </body>
    </html>
    """

    return HTMLResponse(content=html_content, status_code=status_code)
