"""Tests for the login attempt ring buffer."""

from unittest.mock import MagicMock

from magic_login.core.hooks import Hooks, MagicLoginEvent
from magic_login.schemas.magic_login import LoginStatus
from magic_login.services.login_attempt_log import (
    DEFAULT_LOG_CAPACITY,
    LoginAttemptLog,
)
from tests.conftest import FrozenClock


def _record(log: LoginAttemptLog, user_id: int, status: LoginStatus = LoginStatus.SUCCESS):
    return log.record(user_id, status, ip_address="192.0.2.1", user_agent="ua")


class TestDisabled:
    def test_disabled_by_default(self) -> None:
        log = LoginAttemptLog()

        assert log.enabled is False
        assert _record(log, 1) is None
        assert len(log) == 0

    def test_disabled_log_emits_nothing(self) -> None:
        hooks = Hooks()
        listener = MagicMock()
        hooks.on(MagicLoginEvent.LOGIN_ATTEMPT_LOGGED, listener)

        _record(LoginAttemptLog(hooks=hooks), 1)

        listener.assert_not_called()


class TestRecording:
    def test_entry_fields(self, clock: FrozenClock) -> None:
        log = LoginAttemptLog(enabled=True, clock=clock)

        entry = log.record(
            5,
            LoginStatus.FAILED,
            ip_address="192.0.2.1",
            user_agent="Mozilla/5.0",
            data={"error": "expired"},
        )

        assert entry is not None
        assert entry.user_id == 5
        assert entry.status is LoginStatus.FAILED
        assert entry.ip_address == "192.0.2.1"
        assert entry.user_agent == "Mozilla/5.0"
        assert entry.timestamp == clock.now
        assert entry.data == {"error": "expired"}

    def test_entries_newest_first(self) -> None:
        log = LoginAttemptLog(enabled=True)
        for user_id in (1, 2, 3):
            _record(log, user_id)

        assert [e.user_id for e in log.entries()] == [3, 2, 1]
        assert [e.user_id for e in log.entries(limit=2)] == [3, 2]

    def test_default_capacity(self) -> None:
        assert LoginAttemptLog(enabled=True).capacity == DEFAULT_LOG_CAPACITY == 1000

    def test_oldest_evicted_at_capacity(self) -> None:
        log = LoginAttemptLog(enabled=True, capacity=3)
        for user_id in range(1, 6):
            _record(log, user_id)

        assert len(log) == 3
        assert [e.user_id for e in log.entries()] == [5, 4, 3]

    def test_full_default_buffer_keeps_latest_thousand(self) -> None:
        log = LoginAttemptLog(enabled=True)
        for user_id in range(1, 1101):
            _record(log, user_id)

        entries = log.entries()
        assert len(entries) == 1000
        assert entries[0].user_id == 1100
        assert entries[-1].user_id == 101

    def test_emits_logged_event(self) -> None:
        hooks = Hooks()
        listener = MagicMock()
        hooks.on(MagicLoginEvent.LOGIN_ATTEMPT_LOGGED, listener)
        log = LoginAttemptLog(enabled=True, hooks=hooks)

        entry = _record(log, 1)

        listener.assert_called_once_with(entry=entry)

    def test_clear(self) -> None:
        log = LoginAttemptLog(enabled=True)
        _record(log, 1)

        log.clear()

        assert log.entries() == []
