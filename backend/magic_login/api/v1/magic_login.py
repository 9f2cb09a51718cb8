"""Internal magic login endpoints.

Called by the email pipeline and by operators, authenticated with the
internal API key.

Endpoints:
- POST /magic-login/email-links: issue a token and rewrite an email body
- GET /magic-login/stats: token counts by state
- POST /magic-login/cleanup: run the sweep now
- GET /magic-login/logs: recent login attempts, newest first
- DELETE /magic-login/users/{user_id}/token: revoke a user's token
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query, Request, status
from starlette.responses import Response

from magic_login.api.deps import Components, require_internal_api_key
from magic_login.core.client_ip import get_client_ip
from magic_login.core.errors import NotFoundError
from magic_login.core.rate_limiting import INTERNAL_API_LIMIT, limiter
from magic_login.core.responses import DataResponse
from magic_login.schemas.magic_login import (
    UNKNOWN_IP,
    CleanupResponse,
    EmailLinksRequest,
    EmailLinksResponse,
    LogEntry,
    TokenStatisticsResponse,
)
from magic_login.services.email_links import prepare_email_html

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_internal_api_key)])

_DEFAULT_LOG_LIMIT = 100
_MAX_LOG_LIMIT = 1000


@router.post("/email-links")
@limiter.limit(INTERNAL_API_LIMIT)
async def create_email_links(
    request: Request,  # noqa: ARG001
    body: EmailLinksRequest,
    components: Components,
) -> DataResponse[EmailLinksResponse]:
    """Issue a fresh token for the recipient and add it to the email's links.

    ``issuing_ip`` is the address of whoever triggered the email, when the
    pipeline knows it; it is validated like a forwarded header.
    """
    issuing_ip = UNKNOWN_IP
    if body.issuing_ip:
        issuing_ip = get_client_ip({"client-ip": body.issuing_ip})

    prepared = await prepare_email_html(
        components,
        body.html,
        body.user_id,
        body.email,
        issuing_ip,
    )
    return DataResponse(
        data=EmailLinksResponse(
            html=prepared.html,
            token_issued=prepared.token_issued,
            links_rewritten=prepared.links_rewritten,
        )
    )


@router.get("/stats")
@limiter.limit(INTERNAL_API_LIMIT)
async def get_token_statistics(
    request: Request,  # noqa: ARG001
    components: Components,
) -> DataResponse[TokenStatisticsResponse]:
    """Token counts by state."""
    stats = await components.manager.statistics()
    return DataResponse(
        data=TokenStatisticsResponse(
            total=stats.total,
            used=stats.used,
            active=stats.active,
            expired=stats.expired,
        )
    )


@router.post("/cleanup")
@limiter.limit(INTERNAL_API_LIMIT)
async def run_cleanup(
    request: Request,  # noqa: ARG001
    components: Components,
) -> DataResponse[CleanupResponse]:
    """Sweep expired and used tokens immediately."""
    deleted = await components.manager.sweep()
    return DataResponse(data=CleanupResponse(deleted=deleted))


@router.get("/logs")
@limiter.limit(INTERNAL_API_LIMIT)
async def list_login_attempts(
    request: Request,  # noqa: ARG001
    components: Components,
    limit: Annotated[int, Query(ge=1, le=_MAX_LOG_LIMIT)] = _DEFAULT_LOG_LIMIT,
) -> DataResponse[list[LogEntry]]:
    """Recent login attempts, newest first. Empty while logging is disabled."""
    return DataResponse(data=components.attempt_log.entries(limit))


@router.delete(
    "/users/{user_id}/token",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
)
@limiter.limit(INTERNAL_API_LIMIT)
async def revoke_user_token(
    request: Request,  # noqa: ARG001
    components: Components,
    user_id: Annotated[int, Path(gt=0)],
) -> Response:
    """Delete the user's token, e.g. when the account is removed.

    Raises:
        NotFoundError: The user holds no token.
    """
    if not await components.manager.revoke_for_user(user_id):
        raise NotFoundError("Magic login token", str(user_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
