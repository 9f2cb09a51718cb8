"""Middleware that consumes magic login links.

Runs before routing on every request. Requests without ``agw_token`` pass
straight through. Requests with one are resolved by the LoginResolver and
answered with a 302 redirect; the downstream route never runs.

The redirect response carries:
- the new session cookie on success
- Referrer-Policy: no-referrer, so the token never leaks to the next page
- Cache-Control: no-store, so the one-time response is never replayed
"""

import logging

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response

from magic_login.core.auth import CookieSession
from magic_login.core.client_ip import get_client_ip
from magic_login.services.login_resolver import MagicLoginRequest
from magic_login.services.redirects import MAGIC_TOKEN_PARAM

logger = logging.getLogger(__name__)


def request_from_starlette(request: Request) -> MagicLoginRequest:
    """Build the resolver's view of a Starlette request."""
    remote_addr = request.client.host if request.client else None
    return MagicLoginRequest(
        query_params=request.query_params,
        url=str(request.url),
        host=request.headers.get("host"),
        client_ip=get_client_ip(request.headers, remote_addr),
        user_agent=request.headers.get("user-agent", ""),
    )


class MagicLoginMiddleware(BaseHTTPMiddleware):
    """Resolve magic login tokens and redirect.

    Reads the components from ``request.app.state.magic_login``.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Short-circuit token-bearing requests with a login redirect."""
        if MAGIC_TOKEN_PARAM not in request.query_params:
            return await call_next(request)

        components = request.app.state.magic_login
        if not components.settings.magic_login_enabled:
            return await call_next(request)

        session = CookieSession(components.settings)
        result = await components.resolver.process(
            request_from_starlette(request), session
        )
        if result is None:
            return await call_next(request)

        logger.debug(
            "Magic login %s; redirecting",
            result.status.value,
        )
        response = RedirectResponse(result.redirect_url, status_code=302)
        response.headers["Referrer-Policy"] = "no-referrer"
        response.headers["Cache-Control"] = "no-store"
        session.apply(response)
        return response
