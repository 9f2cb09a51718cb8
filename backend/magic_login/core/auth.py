"""Session hand-off after a successful magic login.

The session is a signed HS256 JWT in an httpOnly cookie. CookieSession
collects what the login resolver asks for (clear the old session, bind a
new user) and applies it to the redirect response at the end.
"""

import logging
from datetime import UTC, datetime, timedelta

import jwt
from starlette.responses import Response

from magic_login.core.config import Settings

logger = logging.getLogger(__name__)


def create_jwt(
    *,
    user_id: str,
    settings: Settings,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed JWT with standard claims.

    Args:
        user_id: User id for the sub claim.
        settings: Provides the signing secret, issuer and audience.
        expires_delta: Time until expiration. Defaults to the session length.

    Returns:
        Encoded JWT string.
    """
    now = datetime.now(UTC)
    payload = {
        "sub": user_id,
        "aud": settings.auth_audience,
        "iss": settings.auth_issuer,
        "exp": now + (expires_delta or timedelta(hours=settings.auth_session_hours)),
        "iat": now,
    }
    return jwt.encode(
        payload, settings.auth_secret.get_secret_value(), algorithm="HS256"
    )


def decode_jwt(token: str, settings: Settings) -> dict:
    """Verify and decode a session JWT.

    Raises:
        jwt.InvalidTokenError: Signature, expiry, audience or issuer invalid.
    """
    return jwt.decode(
        token,
        settings.auth_secret.get_secret_value(),
        algorithms=["HS256"],
        audience=settings.auth_audience,
        issuer=settings.auth_issuer,
    )


def set_auth_cookie(response: Response, token: str, settings: Settings) -> None:
    """Set the httpOnly session cookie on ``response``."""
    response.set_cookie(
        key=settings.auth_cookie_name,
        value=token,
        httponly=True,
        secure=settings.auth_cookie_secure,
        samesite=settings.auth_cookie_samesite,
        path="/",
        max_age=settings.auth_session_hours * 3600,
        domain=settings.auth_cookie_domain or None,
    )


def clear_auth_cookie(response: Response, settings: Settings) -> None:
    """Expire the session cookie. Attributes must match set_auth_cookie()."""
    response.delete_cookie(
        key=settings.auth_cookie_name,
        path="/",
        httponly=True,
        secure=settings.auth_cookie_secure,
        samesite=settings.auth_cookie_samesite,
        domain=settings.auth_cookie_domain or None,
    )


class CookieSession:
    """Session binder backed by the JWT cookie.

    ``clear()`` and ``bind()`` only record intent; ``apply()`` writes the
    resulting Set-Cookie header once the redirect response exists.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._cleared = False
        self._token: str | None = None
        self.user_id: int | None = None

    def clear(self) -> None:
        """Drop any session bound so far and expire the existing cookie."""
        self._cleared = True
        self._token = None
        self.user_id = None

    def bind(self, user_id: int) -> None:
        """Authenticate ``user_id`` for subsequent requests."""
        self._token = create_jwt(user_id=str(user_id), settings=self._settings)
        self.user_id = user_id

    def apply(self, response: Response) -> None:
        """Write the pending session change to ``response``."""
        if self._token is not None:
            set_auth_cookie(response, self._token, self._settings)
        elif self._cleared:
            clear_auth_cookie(response, self._settings)
