"""Inbound magic login state machine.

    START --no token--> (no action)
      |
    TOKEN_PRESENT --empty after sanitizing--> FAILED
      |
    VALIDATING --invalid / expired / used / store error--> FAILED
      |
    SUCCESS (token consumed, session bound)
      |
    SUCCESS | FAILED --> REDIRECTING (terminal)

Successful and failed logins share the same redirect resolution, so the
redirect parameter can never send anyone off-site whatever the token's
state. Redirect candidates, first acceptable wins:

1. ``agw_redirect``, decoded up to ``decode_depth`` extra levels
2. upstream tracker ``url`` parameter, same treatment
3. the current request URL without magic parameters
4. the site root
"""

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from magic_login.core.errors import (
    MagicLoginError,
    MalformedTokenError,
    TokenAlreadyUsedError,
    TokenNotFoundError,
    TokenStoreError,
    UnsafeRedirectTargetError,
)
from magic_login.core.hooks import Hooks, MagicLoginEvent
from magic_login.schemas.magic_login import UNKNOWN_IP, LoginStatus
from magic_login.services.login_attempt_log import ANONYMOUS_USER_ID, LoginAttemptLog
from magic_login.services.redirects import (
    MAGIC_REDIRECT_PARAM,
    MAGIC_TOKEN_PARAM,
    UPSTREAM_URL_PARAM,
    decode_url_param,
    ensure_same_site,
    host_of,
    is_same_site,
    sanitize_redirect_url,
    strip_magic_params,
)
from magic_login.services.token_manager import TokenManager

logger = logging.getLogger(__name__)

# Longest raw token input considered; real tokens are 32 characters
MAX_TOKEN_INPUT_LENGTH = 256

DEFAULT_DECODE_DEPTH = 2

_TAG_PATTERN = re.compile(r"<[^>]*>")
_WHITESPACE_AND_CONTROL = re.compile(r"[\s\x00-\x1f\x7f]+")


class LoginState(str, Enum):
    """States of the inbound login flow."""

    START = "start"
    TOKEN_PRESENT = "token_present"
    VALIDATING = "validating"
    SUCCESS = "success"
    FAILED = "failed"
    REDIRECTING = "redirecting"


@dataclass(frozen=True)
class MagicLoginRequest:
    """Framework-independent view of an inbound request.

    Attributes:
        query_params: Decoded query parameters.
        url: Full request URL.
        host: Host header the request arrived with (may include a port).
        client_ip: Client address for the attempt log.
        user_agent: User-Agent header for the attempt log.
    """

    query_params: Mapping[str, str]
    url: str
    host: str | None = None
    client_ip: str = UNKNOWN_IP
    user_agent: str = ""


class SessionBinder(Protocol):
    """Establishes the authenticated session for a user."""

    def clear(self) -> None:
        """Discard any existing session state."""
        ...

    def bind(self, user_id: int) -> None:
        """Authenticate ``user_id``."""
        ...


@dataclass
class LoginResult:
    """Outcome of LoginResolver.process.

    Attributes:
        status: LoginState.SUCCESS or LoginState.FAILED.
        redirect_url: Where to send the user.
        user_id: Authenticated user on success.
        error: "invalid", "expired" or "used" on failure.
        states: States visited, in order.
    """

    status: LoginState
    redirect_url: str
    user_id: int | None = None
    error: str | None = None
    states: list[LoginState] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        """Whether the user was logged in."""
        return self.status is LoginState.SUCCESS


def sanitize_token(raw: str) -> str:
    """Strip markup, whitespace and control characters from a raw token."""
    cleaned = _TAG_PATTERN.sub("", raw)
    cleaned = _WHITESPACE_AND_CONTROL.sub("", cleaned)
    return cleaned[:MAX_TOKEN_INPUT_LENGTH]


class LoginResolver:
    """Turns a token-bearing request into a login and a safe redirect.

    Args:
        manager: Validates and consumes tokens.
        attempt_log: Records success and failure attempts.
        site_url: Canonical site URL (same-site host and final fallback).
        decode_depth: Extra percent-decoding passes for redirect parameters.
        hooks: Listener registry and redirect transforms.
    """

    def __init__(
        self,
        manager: TokenManager,
        attempt_log: LoginAttemptLog,
        *,
        site_url: str,
        decode_depth: int = DEFAULT_DECODE_DEPTH,
        hooks: Hooks | None = None,
    ) -> None:
        self._manager = manager
        self._attempt_log = attempt_log
        self._site_url = site_url
        self._site_host = host_of(site_url)
        self._decode_depth = decode_depth
        self._hooks = hooks or Hooks()

    async def process(
        self,
        request: MagicLoginRequest,
        session: SessionBinder,
    ) -> LoginResult | None:
        """Run the login flow for ``request``.

        Returns:
            None when the request carries no token (normal handling
            continues); otherwise the terminal LoginResult.
        """
        states = [LoginState.START]

        raw_token = request.query_params.get(MAGIC_TOKEN_PARAM)
        if raw_token is None:
            return None
        states.append(LoginState.TOKEN_PRESENT)

        token = sanitize_token(raw_token)
        if not token:
            return self._fail(request, states, MalformedTokenError())

        states.append(LoginState.VALIDATING)
        try:
            outcome = await self._manager.validate(token)
            if not outcome.valid:
                return self._fail(
                    request,
                    states,
                    error=outcome.error,
                    message=outcome.message,
                )
            record = outcome.record
            user_id = outcome.user_id
            consumed = await self._manager.consume(user_id)  # type: ignore[arg-type]
        except TokenStoreError as exc:
            logger.error("Token store failure during magic login: %s", exc.message)
            return self._fail(
                request, states, TokenNotFoundError("Token store unavailable.")
            )

        if not consumed:
            return self._fail(request, states, TokenAlreadyUsedError())

        self._log(
            request,
            user_id,  # type: ignore[arg-type]
            LoginStatus.SUCCESS,
            {
                "email": record.email if record else None,
                "created_at": record.created_at.isoformat() if record else None,
                "issuing_ip": record.issuing_ip if record else None,
            },
        )

        session.clear()
        session.bind(user_id)  # type: ignore[arg-type]
        states.append(LoginState.SUCCESS)

        redirect_url = self._transform_redirect(
            self.resolve_redirect(request),
            user_id,  # type: ignore[arg-type]
            request,
        )
        self._hooks.emit(MagicLoginEvent.LOGIN_SUCCEEDED, user_id=user_id, record=record)

        states.append(LoginState.REDIRECTING)
        return LoginResult(
            status=LoginState.SUCCESS,
            redirect_url=redirect_url,
            user_id=user_id,
            states=states,
        )

    def _fail(
        self,
        request: MagicLoginRequest,
        states: list[LoginState],
        exc: MagicLoginError | None = None,
        *,
        error: str | None = None,
        message: str | None = None,
    ) -> LoginResult:
        if exc is not None:
            error, message = exc.code, exc.detail
        error = error or TokenNotFoundError.code_value

        self._log(
            request,
            ANONYMOUS_USER_ID,
            LoginStatus.FAILED,
            {"error": error, "message": message},
        )
        states.append(LoginState.FAILED)

        redirect_url = self.resolve_redirect(request)
        states.append(LoginState.REDIRECTING)
        return LoginResult(
            status=LoginState.FAILED,
            redirect_url=redirect_url,
            error=error,
            states=states,
        )

    def _log(
        self,
        request: MagicLoginRequest,
        user_id: int,
        status: LoginStatus,
        data: dict,
    ) -> None:
        self._attempt_log.record(
            user_id,
            status,
            ip_address=request.client_ip,
            user_agent=request.user_agent,
            data=data,
        )

    def resolve_redirect(self, request: MagicLoginRequest) -> str:
        """Pick the safest useful destination for ``request``."""
        for param in (MAGIC_REDIRECT_PARAM, UPSTREAM_URL_PARAM):
            raw = request.query_params.get(param)
            if not raw:
                continue
            candidate = strip_magic_params(
                sanitize_redirect_url(decode_url_param(raw, self._decode_depth))
            )
            try:
                return ensure_same_site(candidate, self._site_host, request.host)
            except UnsafeRedirectTargetError:
                logger.info("Ignoring off-site redirect target from '%s'", param)

        current = strip_magic_params(request.url)
        if current and is_same_site(current, self._site_host, request.host):
            return current

        return self._site_url

    def _transform_redirect(
        self,
        redirect_url: str,
        user_id: int,
        request: MagicLoginRequest,
    ) -> str:
        transformed = self._hooks.transform_redirect(redirect_url, user_id)
        if is_same_site(transformed, self._site_host, request.host):
            return transformed
        logger.warning("Redirect transform produced an off-site URL; using site root")
        return self._site_url
