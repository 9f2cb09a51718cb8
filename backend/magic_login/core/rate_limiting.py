"""Rate limiting configuration using slowapi.

Limits request frequency on the internal API. Requests are keyed on the
client address; the limiter is switched on or off per application from
Settings.rate_limit_enabled in create_app().

Usage in routers:
    from magic_login.core.rate_limiting import limiter

    @router.post("/email-links")
    @limiter.limit(INTERNAL_API_LIMIT)
    async def create_email_links(request: Request, ...):
        ...
"""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

# In-memory storage (single instance). For multiple instances configure a
# shared backend via RATELIMIT_STORAGE_URL.
limiter = Limiter(key_func=get_remote_address)

# Internal API budget per client address
INTERNAL_API_LIMIT = "120/minute"


def rate_limit_exceeded_handler(
    _request: Request,
    exc: RateLimitExceeded,
) -> Response:
    """Return 429 Too Many Requests with the standard error envelope.

    Args:
        request: The incoming request.
        exc: The rate limit exception.

    Returns:
        JSONResponse with 429 status and retry-after header.
    """
    # Detail looks like "120 per 1 minute"; fall back to 60 seconds
    try:
        retry_after = str(exc.detail.split()[-1])
        int(retry_after.rstrip("s"))
    except (ValueError, AttributeError, IndexError):
        retry_after = "60"

    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMITED",
                "message": f"Rate limit exceeded: {exc.detail}",
            }
        },
        headers={"Retry-After": retry_after},
    )
