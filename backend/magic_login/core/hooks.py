"""Listener registration for magic login extension points.

Observers subscribe to named events and are called synchronously, in
registration order, at fixed points in the token lifecycle and login flow.
A failing observer is logged and skipped; it never breaks the core flow.

Filter chains let collaborators shape behaviour:
- skip policies veto rewriting of a link (any True skips it)
- link URL transforms rewrite the final magic link URL
- redirect transforms rewrite the post-login redirect target

A failing filter is logged too. Transforms keep the previous value; a
failing skip policy leaves the link untouched.

Usage:
    hooks = Hooks()
    hooks.on(MagicLoginEvent.LOGIN_SUCCEEDED, lambda user_id, record: ...)
    hooks.add_skip_policy(lambda url: "/preview/" in url)
"""

import logging
from collections import defaultdict
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

SkipPolicy = Callable[[str], bool]
LinkUrlTransform = Callable[[str, str, str, int | None], str]
RedirectTransform = Callable[[str, int], str]


class MagicLoginEvent(str, Enum):
    """Events emitted by the magic login core.

    Payloads (keyword arguments):
    - TOKEN_CREATED: token, user_id, record
    - TOKEN_USED: user_id, record
    - TOKENS_CLEANED: count
    - LOGIN_SUCCEEDED: user_id, record
    - LOGIN_ATTEMPT_LOGGED: entry
    - EMAIL_LINKS_ADDED: user_id, links_rewritten
    """

    TOKEN_CREATED = "token_created"
    TOKEN_USED = "token_used"
    TOKENS_CLEANED = "tokens_cleaned"
    LOGIN_SUCCEEDED = "login_succeeded"
    LOGIN_ATTEMPT_LOGGED = "login_attempt_logged"
    EMAIL_LINKS_ADDED = "email_links_added"


class Hooks:
    """Registry of event listeners and filter chains."""

    def __init__(self) -> None:
        self._listeners: dict[MagicLoginEvent, list[Callable[..., Any]]] = (
            defaultdict(list)
        )
        self._skip_policies: list[SkipPolicy] = []
        self._link_url_transforms: list[LinkUrlTransform] = []
        self._redirect_transforms: list[RedirectTransform] = []

    # -----------------------------------------------------------------
    # Events
    # -----------------------------------------------------------------

    def on(self, event: MagicLoginEvent, listener: Callable[..., Any]) -> None:
        """Subscribe ``listener`` to ``event``."""
        self._listeners[event].append(listener)

    def off(self, event: MagicLoginEvent, listener: Callable[..., Any]) -> None:
        """Unsubscribe ``listener`` from ``event``. No-op if not subscribed."""
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def emit(self, event: MagicLoginEvent, **payload: Any) -> None:
        """Call every listener for ``event`` with ``payload``.

        Listener exceptions are logged and do not propagate.
        """
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(**payload)
            except Exception:  # noqa: BLE001
                logger.exception("Listener for %s failed", event.value)

    # -----------------------------------------------------------------
    # Filters
    # -----------------------------------------------------------------

    def add_skip_policy(self, policy: SkipPolicy) -> None:
        """Register a policy that returns True to leave a link untouched."""
        self._skip_policies.append(policy)

    def add_link_url_transform(self, transform: LinkUrlTransform) -> None:
        """Register ``transform(new_url, original_url, token, user_id)``."""
        self._link_url_transforms.append(transform)

    def add_redirect_transform(self, transform: RedirectTransform) -> None:
        """Register ``transform(redirect_url, user_id)`` for successful logins."""
        self._redirect_transforms.append(transform)

    def should_skip_link(self, url: str) -> bool:
        """True if any registered policy vetoes rewriting ``url``.

        A policy that raises is logged and counts as a veto, so the link
        is left untouched.
        """
        for policy in self._skip_policies:
            try:
                if policy(url):
                    return True
            except Exception:  # noqa: BLE001
                logger.exception("Link skip policy failed; leaving link untouched")
                return True
        return False

    def transform_link_url(
        self,
        new_url: str,
        original_url: str,
        token: str,
        user_id: int | None,
    ) -> str:
        """Run the link URL transform chain.

        A transform that raises is logged and skipped; the URL from the
        previous step is kept.
        """
        for transform in self._link_url_transforms:
            try:
                new_url = transform(new_url, original_url, token, user_id)
            except Exception:  # noqa: BLE001
                logger.exception("Link URL transform failed; keeping previous URL")
        return new_url

    def transform_redirect(self, redirect_url: str, user_id: int) -> str:
        """Run the redirect transform chain.

        A transform that raises is logged and skipped; the target from the
        previous step is kept.
        """
        for transform in self._redirect_transforms:
            try:
                redirect_url = transform(redirect_url, user_id)
            except Exception:  # noqa: BLE001
                logger.exception("Redirect transform failed; keeping previous target")
        return redirect_url
