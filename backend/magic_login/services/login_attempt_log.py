"""Bounded log of magic login attempts.

Keeps the most recent attempts (1000 by default) in a ring buffer; the
oldest entry is evicted once capacity is reached. Recording is a no-op
unless attempt logging is enabled. Each recorded entry is also written as
a structured log event and announced to LOGIN_ATTEMPT_LOGGED listeners.
"""

from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import structlog

from magic_login.core.hooks import Hooks, MagicLoginEvent
from magic_login.schemas.magic_login import LoginStatus, LogEntry

logger = structlog.get_logger()

DEFAULT_LOG_CAPACITY = 1000

# user_id recorded for failed or anonymous attempts
ANONYMOUS_USER_ID = 0


def _utcnow() -> datetime:
    return datetime.now(UTC)


class LoginAttemptLog:
    """Ring buffer of LogEntry values.

    Args:
        enabled: Whether attempts are recorded at all.
        capacity: Maximum number of entries kept.
        hooks: Listener registry notified for every recorded entry.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        *,
        enabled: bool = False,
        capacity: int = DEFAULT_LOG_CAPACITY,
        hooks: Hooks | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._enabled = enabled
        self._entries: deque[LogEntry] = deque(maxlen=capacity)
        self._hooks = hooks or Hooks()
        self._clock = clock

    @property
    def enabled(self) -> bool:
        """Whether attempts are being recorded."""
        return self._enabled

    @property
    def capacity(self) -> int:
        """Maximum number of retained entries."""
        return self._entries.maxlen or DEFAULT_LOG_CAPACITY

    def __len__(self) -> int:
        return len(self._entries)

    def record(
        self,
        user_id: int,
        status: LoginStatus,
        *,
        ip_address: str,
        user_agent: str = "",
        data: dict[str, Any] | None = None,
    ) -> LogEntry | None:
        """Append an attempt to the log.

        Returns:
            The stored entry, or None when logging is disabled.
        """
        if not self._enabled:
            return None

        entry = LogEntry(
            user_id=user_id,
            status=status,
            ip_address=ip_address,
            user_agent=user_agent,
            timestamp=self._clock(),
            data=data or {},
        )
        self._entries.append(entry)

        logger.info(
            "magic_login_attempt",
            user_id=entry.user_id,
            status=entry.status.value,
            ip_address=entry.ip_address,
            error=entry.data.get("error"),
        )
        self._hooks.emit(MagicLoginEvent.LOGIN_ATTEMPT_LOGGED, entry=entry)
        return entry

    def entries(self, limit: int | None = None) -> list[LogEntry]:
        """Recorded entries, newest first.

        Args:
            limit: Maximum number of entries to return.
        """
        newest_first = list(reversed(self._entries))
        if limit is not None:
            return newest_first[:limit]
        return newest_first

    def clear(self) -> None:
        """Drop all entries."""
        self._entries.clear()
