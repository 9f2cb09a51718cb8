"""Tests for TokenManager.

Covers:
- generate: token shape, record contents, overwrite, expiry clamp
- validate: valid / invalid / expired / used, burned-token ledger
- consume: compare-and-swap, concurrency
- sweep, statistics, revoke and purge
- store failures propagate as TokenStoreError
"""

import asyncio
import string
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from magic_login.core.errors import TokenStoreError
from magic_login.core.hooks import Hooks, MagicLoginEvent
from magic_login.services.token_manager import (
    TOKEN_LENGTH,
    TokenManager,
    generate_token_value,
    token_digest,
)
from magic_login.services.token_store import InMemoryTokenStore
from tests.conftest import TEST_EMAIL, TEST_USER_ID, FrozenClock


class TestTokenValue:
    def test_length_and_alphabet(self) -> None:
        token = generate_token_value()

        assert len(token) == TOKEN_LENGTH
        assert set(token) <= set(string.ascii_letters + string.digits)

    def test_tokens_are_unique(self) -> None:
        assert len({generate_token_value() for _ in range(200)}) == 200

    def test_digest_is_sha256_hex(self) -> None:
        digest = token_digest("abc")

        assert len(digest) == 64
        assert digest == token_digest("abc")
        assert digest != token_digest("abd")


class TestGenerate:
    async def test_record_contents(
        self, manager: TokenManager, store: InMemoryTokenStore, clock: FrozenClock
    ) -> None:
        token = await manager.generate(TEST_EMAIL, TEST_USER_ID, "198.51.100.7")

        record = await store.get(TEST_USER_ID)
        assert record is not None
        assert record.token == token
        assert record.email == TEST_EMAIL
        assert record.created_at == clock.now
        assert record.expires_at == clock.now + timedelta(hours=24)
        assert record.used is False
        assert record.issuing_ip == "198.51.100.7"

    async def test_issuing_ip_defaults_to_unknown(
        self, manager: TokenManager, store: InMemoryTokenStore
    ) -> None:
        await manager.generate(TEST_EMAIL, TEST_USER_ID)

        record = await store.get(TEST_USER_ID)
        assert record is not None
        assert record.issuing_ip == "UNKNOWN"

    async def test_regenerate_invalidates_previous_token(
        self, manager: TokenManager
    ) -> None:
        first = await manager.generate(TEST_EMAIL, TEST_USER_ID)
        second = await manager.generate(TEST_EMAIL, TEST_USER_ID)

        assert (await manager.validate(first)).error == "invalid"
        assert (await manager.validate(second)).valid is True

    @pytest.mark.parametrize(("hours", "expected"), [(0, 1), (24, 24), (1000, 168)])
    def test_expiry_clamped(
        self, store: InMemoryTokenStore, hours: int, expected: int
    ) -> None:
        manager = TokenManager(store, expiry_hours=hours)

        assert manager.expiry == timedelta(hours=expected)

    async def test_emits_token_created(
        self, manager: TokenManager, hooks: Hooks
    ) -> None:
        listener = MagicMock()
        hooks.on(MagicLoginEvent.TOKEN_CREATED, listener)

        token = await manager.generate(TEST_EMAIL, TEST_USER_ID)

        listener.assert_called_once()
        assert listener.call_args.kwargs["token"] == token
        assert listener.call_args.kwargs["user_id"] == TEST_USER_ID


class TestValidate:
    async def test_fresh_token_is_valid(self, manager: TokenManager) -> None:
        token = await manager.generate(TEST_EMAIL, TEST_USER_ID)

        outcome = await manager.validate(token)

        assert outcome.valid is True
        assert outcome.user_id == TEST_USER_ID
        assert outcome.record is not None
        assert outcome.error is None

    async def test_unknown_token_is_invalid(self, manager: TokenManager) -> None:
        outcome = await manager.validate("does-not-exist")

        assert outcome.valid is False
        assert outcome.error == "invalid"
        assert outcome.user_id is None

    async def test_empty_token_is_invalid(self, manager: TokenManager) -> None:
        assert (await manager.validate("")).error == "invalid"

    async def test_prefix_of_real_token_is_invalid(self, manager: TokenManager) -> None:
        token = await manager.generate(TEST_EMAIL, TEST_USER_ID)

        assert (await manager.validate(token[:-1])).error == "invalid"

    async def test_validate_does_not_consume(self, manager: TokenManager) -> None:
        token = await manager.generate(TEST_EMAIL, TEST_USER_ID)

        assert (await manager.validate(token)).valid is True
        assert (await manager.validate(token)).valid is True

    async def test_expired_token_deleted(
        self, manager: TokenManager, store: InMemoryTokenStore, clock: FrozenClock
    ) -> None:
        token = await manager.generate(TEST_EMAIL, TEST_USER_ID)
        clock.advance(hours=25)

        outcome = await manager.validate(token)

        assert outcome.error == "expired"
        assert await store.get(TEST_USER_ID) is None

    async def test_token_valid_at_exact_expiry(
        self, manager: TokenManager, clock: FrozenClock
    ) -> None:
        token = await manager.generate(TEST_EMAIL, TEST_USER_ID)
        clock.advance(hours=24)

        assert (await manager.validate(token)).valid is True

    async def test_consumed_token_reports_used_repeatedly(
        self, manager: TokenManager, store: InMemoryTokenStore
    ) -> None:
        token = await manager.generate(TEST_EMAIL, TEST_USER_ID)
        assert await manager.consume(TEST_USER_ID) is True

        first = await manager.validate(token)
        second = await manager.validate(token)

        assert first.error == "used"
        assert second.error == "used"
        assert await store.get(TEST_USER_ID) is None

    async def test_burned_token_becomes_invalid_after_expiry(
        self, manager: TokenManager, clock: FrozenClock
    ) -> None:
        token = await manager.generate(TEST_EMAIL, TEST_USER_ID)
        await manager.consume(TEST_USER_ID)
        await manager.validate(token)

        clock.advance(hours=25)

        assert (await manager.validate(token)).error == "invalid"

    async def test_malformed_records_are_skipped(
        self, manager: TokenManager, store: InMemoryTokenStore
    ) -> None:
        store.put_raw(1, {"broken": True})
        token = await manager.generate(TEST_EMAIL, TEST_USER_ID)

        assert (await manager.validate(token)).valid is True

    async def test_store_failure_propagates(self) -> None:
        broken = MagicMock(spec=InMemoryTokenStore)
        broken.user_ids = AsyncMock(side_effect=TokenStoreError("down"))
        manager = TokenManager(broken)

        with pytest.raises(TokenStoreError):
            await manager.validate("anything")


class TestConsume:
    async def test_consume_marks_used(
        self, manager: TokenManager, store: InMemoryTokenStore, clock: FrozenClock
    ) -> None:
        await manager.generate(TEST_EMAIL, TEST_USER_ID)

        assert await manager.consume(TEST_USER_ID) is True

        record = await store.get(TEST_USER_ID)
        assert record is not None
        assert record.used is True
        assert record.used_at == clock.now

    async def test_second_consume_fails(self, manager: TokenManager) -> None:
        await manager.generate(TEST_EMAIL, TEST_USER_ID)
        await manager.consume(TEST_USER_ID)

        assert await manager.consume(TEST_USER_ID) is False

    async def test_consume_without_record(self, manager: TokenManager) -> None:
        assert await manager.consume(TEST_USER_ID) is False

    async def test_consume_malformed_record(
        self, manager: TokenManager, store: InMemoryTokenStore
    ) -> None:
        store.put_raw(TEST_USER_ID, {"broken": True})

        assert await manager.consume(TEST_USER_ID) is False

    async def test_concurrent_validate_and_consume_one_success(
        self, manager: TokenManager
    ) -> None:
        token = await manager.generate(TEST_EMAIL, TEST_USER_ID)

        async def attempt() -> bool:
            outcome = await manager.validate(token)
            if not outcome.valid:
                return False
            return await manager.consume(outcome.user_id)  # type: ignore[arg-type]

        results = await asyncio.gather(*(attempt() for _ in range(8)))

        assert results.count(True) == 1

    async def test_emits_token_used(self, manager: TokenManager, hooks: Hooks) -> None:
        listener = MagicMock()
        hooks.on(MagicLoginEvent.TOKEN_USED, listener)
        await manager.generate(TEST_EMAIL, TEST_USER_ID)

        await manager.consume(TEST_USER_ID)
        await manager.consume(TEST_USER_ID)

        listener.assert_called_once()


class TestSweep:
    async def test_sweep_deletes_terminal_records_only(
        self, manager: TokenManager, store: InMemoryTokenStore, clock: FrozenClock
    ) -> None:
        await manager.generate("a@example.com", 1)
        await manager.generate("b@example.com", 2)
        await manager.consume(2)
        clock.advance(hours=1)
        await manager.generate("c@example.com", 3)
        store.put_raw(4, "corrupt")

        clock.advance(hours=23, minutes=30)  # user 1 expired, user 3 active

        assert await manager.sweep() == 3
        assert await store.user_ids() == [3]

    async def test_sweep_with_empty_store(self, manager: TokenManager) -> None:
        assert await manager.sweep() == 0

    async def test_sweep_continues_after_per_record_failure(
        self, store: InMemoryTokenStore, clock: FrozenClock
    ) -> None:
        manager = TokenManager(store, clock=clock)
        await manager.generate("a@example.com", 1)
        await manager.consume(1)
        await manager.generate("b@example.com", 2)
        await manager.consume(2)

        original = store.delete_if_terminal

        async def flaky(user_id, now):  # noqa: ANN001, ANN202
            if user_id == 1:
                raise TokenStoreError("locked")
            return await original(user_id, now)

        store.delete_if_terminal = flaky  # type: ignore[method-assign]

        assert await manager.sweep() == 1
        assert await store.user_ids() == [1]

    async def test_sweep_emits_count(
        self, manager: TokenManager, hooks: Hooks
    ) -> None:
        listener = MagicMock()
        hooks.on(MagicLoginEvent.TOKENS_CLEANED, listener)
        await manager.generate(TEST_EMAIL, TEST_USER_ID)
        await manager.consume(TEST_USER_ID)

        await manager.sweep()

        listener.assert_called_once_with(count=1)

    async def test_sweep_purges_stale_burned_digests(
        self, manager: TokenManager, store: InMemoryTokenStore, clock: FrozenClock
    ) -> None:
        token = await manager.generate(TEST_EMAIL, TEST_USER_ID)
        await manager.consume(TEST_USER_ID)
        await manager.validate(token)
        clock.advance(hours=25)

        await manager.sweep()

        assert await store.is_burned(token_digest(token), clock.now) is False

    async def test_consumed_token_reports_used_after_sweep(
        self, manager: TokenManager, store: InMemoryTokenStore
    ) -> None:
        token = await manager.generate(TEST_EMAIL, TEST_USER_ID)
        await manager.consume(TEST_USER_ID)

        assert await manager.sweep() == 1
        assert await store.user_ids() == []

        assert (await manager.validate(token)).error == "used"
        assert (await manager.validate(token)).error == "used"

    async def test_swept_token_invalid_once_expired(
        self, manager: TokenManager, clock: FrozenClock
    ) -> None:
        token = await manager.generate(TEST_EMAIL, TEST_USER_ID)
        await manager.consume(TEST_USER_ID)
        await manager.sweep()
        clock.advance(hours=25)

        assert (await manager.validate(token)).error == "invalid"


class TestStatistics:
    async def test_counts_by_state(
        self, manager: TokenManager, clock: FrozenClock
    ) -> None:
        await manager.generate("a@example.com", 1)
        await manager.generate("b@example.com", 2)
        await manager.consume(2)
        clock.advance(hours=20)
        await manager.generate("c@example.com", 3)
        clock.advance(hours=5)  # user 1 and user 2 past expiry

        stats = await manager.statistics()

        assert stats.total == 3
        assert stats.used == 1
        assert stats.expired == 1
        assert stats.active == 1

    async def test_empty_store(self, manager: TokenManager) -> None:
        stats = await manager.statistics()

        assert (stats.total, stats.used, stats.active, stats.expired) == (0, 0, 0, 0)


class TestRevokeAndPurge:
    async def test_revoke_for_user(self, manager: TokenManager) -> None:
        token = await manager.generate(TEST_EMAIL, TEST_USER_ID)

        assert await manager.revoke_for_user(TEST_USER_ID) is True
        assert await manager.revoke_for_user(TEST_USER_ID) is False
        assert (await manager.validate(token)).error == "invalid"

    async def test_purge_all(self, manager: TokenManager) -> None:
        await manager.generate("a@example.com", 1)
        await manager.generate("b@example.com", 2)

        assert await manager.purge_all() == 2
        assert (await manager.statistics()).total == 0
