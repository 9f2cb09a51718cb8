"""API and domain error classes.

API errors carry a machine-readable code, a human-readable message and an
HTTP status so exception handlers can render a consistent envelope.

Magic login errors describe why a token or redirect target was rejected.
Token errors are never shown to the user as-is: every token failure is
presented with the same generic message so the response cannot be used to
probe for valid tokens or accounts.
"""

# Single user-facing message for every token failure
INVALID_LOGIN_LINK_MSG = "Invalid or expired login link"


class APIError(Exception):
    """Base class for API errors.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class UnauthorizedError(APIError):
    """Authentication required (401)."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=401,
        )


class NotFoundError(APIError):
    """Resource not found (404)."""

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=404,
        )


# =============================================================================
# Magic login errors
# =============================================================================


class MagicLoginError(APIError):
    """Base class for magic login failures.

    ``code`` is the short error code recorded in the attempt log
    ("invalid", "expired", "used"). ``detail`` is the internal
    description; ``message`` is always the generic user-facing text.
    """

    code_value = "invalid"
    detail = "Invalid login link."

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(
            code=self.code_value,
            message=INVALID_LOGIN_LINK_MSG,
            status_code=400,
        )
        if detail is not None:
            self.detail = detail


class TokenNotFoundError(MagicLoginError):
    """No stored record matches the presented token."""

    code_value = "invalid"
    detail = "Invalid login link."


class TokenExpiredError(MagicLoginError):
    """The matching record is past its expiry."""

    code_value = "expired"
    detail = "This login link has expired. Please request a new one."


class TokenAlreadyUsedError(MagicLoginError):
    """The matching record has already been consumed."""

    code_value = "used"
    detail = "This login link has already been used."


class MalformedTokenError(MagicLoginError):
    """The raw token was empty or nothing survived sanitization."""

    code_value = "invalid"
    detail = "Invalid login link."


class UnsafeRedirectTargetError(MagicLoginError):
    """A redirect candidate points outside the site.

    Never surfaced to the user; redirect resolution falls through to the
    next candidate.
    """

    code_value = "unsafe_redirect"
    detail = "Redirect target is not on this site."


class TokenStoreError(APIError):
    """Raised when the token store cannot be read or written."""

    def __init__(self, message: str) -> None:
        super().__init__(
            code="TOKEN_STORE_ERROR",
            message=message,
            status_code=500,
        )


class MalformedTokenRecordError(TokenStoreError):
    """A stored record exists but cannot be parsed into a TokenRecord."""

    def __init__(self, user_id: int) -> None:
        super().__init__(f"Stored token record for user {user_id} is malformed")
        self.user_id = user_id
