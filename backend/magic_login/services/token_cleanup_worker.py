"""Token cleanup background worker.

asyncio background task started from the FastAPI lifespan. Sweeps expired,
used and malformed token records on a fixed interval (daily by default).
"""

import asyncio
import contextlib
import logging
from datetime import UTC, datetime

from magic_login.services.token_manager import TokenManager

logger = logging.getLogger(__name__)

# Default interval: once a day
DEFAULT_INTERVAL_SECONDS = 24 * 60 * 60


class TokenCleanupWorker:
    """Background worker that periodically sweeps the token store.

    Lifecycle:
    - start() creates an asyncio task that runs the sweep loop.
    - stop() cancels the task and waits for it to finish.
    - run_once() executes a single sweep (for testing and manual runs).

    Args:
        manager: Token manager whose sweep is run.
        interval_seconds: Seconds between sweeps.
    """

    def __init__(
        self,
        manager: TokenManager,
        *,
        interval_seconds: int = DEFAULT_INTERVAL_SECONDS,
    ) -> None:
        self._manager = manager
        self._interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self._last_run_at: datetime | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        """Whether the background task is currently active."""
        return self._running and self._task is not None and not self._task.done()

    @property
    def last_run_at(self) -> datetime | None:
        """Timestamp of the most recent completed sweep."""
        return self._last_run_at

    def start(self) -> None:
        """Start the background sweep loop.

        No-op if already running. Must be called with a running event loop.
        """
        if self.is_running:
            logger.warning("Token cleanup worker already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "Token cleanup worker started (interval=%ds)", self._interval_seconds
        )

    async def stop(self) -> None:
        """Stop the background sweep loop and wait for it to finish."""
        self._running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        logger.info("Token cleanup worker stopped")

    async def run_once(self) -> int:
        """Execute a single sweep.

        Returns:
            Number of token records deleted.
        """
        deleted = await self._manager.sweep()
        self._last_run_at = datetime.now(UTC)
        return deleted

    async def _run_loop(self) -> None:
        """Background loop: sweep → sleep → repeat."""
        try:
            while self._running:
                try:
                    deleted = await self.run_once()
                    logger.info("Token cleanup pass: %d records deleted", deleted)
                except Exception:  # noqa: BLE001
                    logger.exception("Error in token cleanup pass")
                await asyncio.sleep(self._interval_seconds)
        except asyncio.CancelledError:
            logger.debug("Token cleanup loop cancelled")
            raise
