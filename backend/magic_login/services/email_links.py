"""Outbound email hook: issue a token and embed it in the email's links."""

import logging
from dataclasses import dataclass

from magic_login.core.hooks import MagicLoginEvent
from magic_login.schemas.magic_login import UNKNOWN_IP
from magic_login.services.components import MagicLoginComponents

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedEmail:
    """Email body after magic login processing.

    Attributes:
        html: Body with eligible links rewritten.
        token_issued: Whether a new token was generated for the recipient.
        links_rewritten: Number of links that received the token.
    """

    html: str
    token_issued: bool
    links_rewritten: int = 0


async def prepare_email_html(
    components: MagicLoginComponents,
    html: str,
    user_id: int,
    email: str,
    issuing_ip: str = UNKNOWN_IP,
) -> PreparedEmail:
    """Issue a fresh token for the recipient and add it to the body's links.

    Issuing replaces any token the user already holds, so only the links
    in the most recent email log the user in. When magic login is disabled
    or the recipient is unknown the body is returned untouched.
    """
    if not components.settings.magic_login_enabled or not user_id or not email:
        return PreparedEmail(html=html, token_issued=False)

    token = await components.manager.generate(email, user_id, issuing_ip)
    result = components.rewriter.rewrite_document(html, token, user_id)

    logger.info(
        "Prepared email for user %s: %d links rewritten",
        user_id,
        result.links_rewritten,
    )
    components.hooks.emit(
        MagicLoginEvent.EMAIL_LINKS_ADDED,
        user_id=user_id,
        links_rewritten=result.links_rewritten,
    )
    return PreparedEmail(
        html=result.html,
        token_issued=True,
        links_rewritten=result.links_rewritten,
    )
