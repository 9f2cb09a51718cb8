"""Shared dependencies for API endpoints.

The internal API is called by the email pipeline, not by browsers, so it is
guarded by a shared secret in the X-Internal-Api-Key header rather than by
the session cookie.
"""

import secrets
from typing import Annotated

from fastapi import Depends, Header, Request

from magic_login.core.errors import UnauthorizedError
from magic_login.services.components import MagicLoginComponents


def get_components(request: Request) -> MagicLoginComponents:
    """Magic login components attached to the application by create_app()."""
    return request.app.state.magic_login


Components = Annotated[MagicLoginComponents, Depends(get_components)]


async def require_internal_api_key(
    components: Components,
    x_internal_api_key: Annotated[str | None, Header()] = None,
) -> None:
    """Reject requests without the configured internal API key.

    The API is closed entirely while no key is configured.

    Raises:
        UnauthorizedError: Key missing, unset on the server or wrong.
    """
    expected = components.settings.internal_api_key.get_secret_value()
    if not expected or not x_internal_api_key:
        raise UnauthorizedError()

    if not secrets.compare_digest(x_internal_api_key.encode(), expected.encode()):
        raise UnauthorizedError()
