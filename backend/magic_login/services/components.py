"""Assembly of the magic login components from Settings.

Everything is built from an explicit Settings object so tests and
embedding applications can wire their own store, hooks or clock:

    components = build_components(Settings(site_url="https://example.com"))
    token = await components.manager.generate("a@example.com", 42)
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from magic_login.core.config import Settings
from magic_login.core.database import create_engine, create_session_factory
from magic_login.core.hooks import Hooks
from magic_login.services.database_token_store import DatabaseTokenStore
from magic_login.services.link_rewriter import LinkRewriter
from magic_login.services.login_attempt_log import LoginAttemptLog
from magic_login.services.login_resolver import LoginResolver
from magic_login.services.token_manager import TokenManager
from magic_login.services.token_store import InMemoryTokenStore, TokenStore

logger = logging.getLogger(__name__)


@dataclass
class MagicLoginComponents:
    """The wired magic login services sharing one store and one hook registry."""

    settings: Settings
    hooks: Hooks
    store: TokenStore
    manager: TokenManager
    rewriter: LinkRewriter
    attempt_log: LoginAttemptLog
    resolver: LoginResolver
    engine: AsyncEngine | None = None

    async def dispose(self) -> None:
        """Release the database engine, if this bundle created one."""
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None


def build_components(
    settings: Settings,
    *,
    store: TokenStore | None = None,
    hooks: Hooks | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    clock: Callable[[], datetime] | None = None,
) -> MagicLoginComponents:
    """Build the magic login services for ``settings``.

    Args:
        settings: Application settings.
        store: Token store to use. Defaults to the configured backend.
        hooks: Hook registry shared by all components.
        session_factory: Session factory for the database backend. An engine
            is created from the database settings when omitted.
        clock: UTC clock override for the manager and the attempt log.

    Returns:
        MagicLoginComponents ready for use.
    """
    hooks = hooks or Hooks()
    engine: AsyncEngine | None = None

    if store is None:
        if settings.token_store_backend == "database":
            if session_factory is None:
                engine = create_engine(settings)
                session_factory = create_session_factory(engine)
            store = DatabaseTokenStore(session_factory)
        else:
            store = InMemoryTokenStore()

    clock_kwargs = {"clock": clock} if clock is not None else {}

    manager = TokenManager(
        store,
        expiry_hours=settings.token_expiry_hours,
        hooks=hooks,
        **clock_kwargs,
    )
    attempt_log = LoginAttemptLog(
        enabled=settings.logging_enabled,
        capacity=settings.log_capacity,
        hooks=hooks,
        **clock_kwargs,
    )
    rewriter = LinkRewriter(
        settings.site_url,
        unsubscribe_markers=settings.unsubscribe_markers,
        hooks=hooks,
    )
    resolver = LoginResolver(
        manager,
        attempt_log,
        site_url=settings.site_url,
        decode_depth=settings.redirect_decode_depth,
        hooks=hooks,
    )

    logger.info(
        "Magic login components built (store=%s, expiry=%dh, logging=%s)",
        type(store).__name__,
        settings.token_expiry_hours,
        settings.logging_enabled,
    )
    return MagicLoginComponents(
        settings=settings,
        hooks=hooks,
        store=store,
        manager=manager,
        rewriter=rewriter,
        attempt_log=attempt_log,
        resolver=resolver,
        engine=engine,
    )
