"""Magic login token lifecycle.

Issues, validates, consumes and sweeps single-use login tokens. The manager
is the only writer to the token store; the link rewriter and the login
resolver only ever see token strings and validation outcomes.

Validation outcomes, in priority order:
- no record holds the token -> "invalid" ("used" if the token was burned)
- record expired -> record deleted, "expired"
- record already used -> digest burned, record deleted, "used"
- otherwise -> valid, with the owning user id and record

Absent and malformed records look identical to callers so a failed lookup
reveals nothing about which accounts exist. Store I/O errors are not
swallowed here: they propagate as TokenStoreError and the caller decides
how to fail safe.
"""

import hmac
import logging
import secrets
import string
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from magic_login.core.config import MAX_TOKEN_EXPIRY_HOURS, MIN_TOKEN_EXPIRY_HOURS
from magic_login.core.errors import (
    MagicLoginError,
    MalformedTokenRecordError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenNotFoundError,
    TokenStoreError,
)
from magic_login.core.hooks import Hooks, MagicLoginEvent
from magic_login.schemas.magic_login import UNKNOWN_IP, TokenRecord
from magic_login.services.token_store import TokenStore, token_digest

logger = logging.getLogger(__name__)

TOKEN_LENGTH = 32
_TOKEN_ALPHABET = string.ascii_letters + string.digits

DEFAULT_EXPIRY_HOURS = 24


def _utcnow() -> datetime:
    return datetime.now(UTC)


def generate_token_value(length: int = TOKEN_LENGTH) -> str:
    """Return a random alphanumeric token from the ``secrets`` CSPRNG."""
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of TokenManager.validate.

    Attributes:
        valid: True if the token may be consumed.
        user_id: Owner of the token when valid.
        record: Stored record when valid.
        error: "invalid", "expired" or "used" when not valid.
        message: Internal description of the failure (for logs only).
    """

    valid: bool
    user_id: int | None = None
    record: TokenRecord | None = None
    error: str | None = None
    message: str | None = None

    @classmethod
    def failure(cls, exc: MagicLoginError) -> "ValidationOutcome":
        """Build a failed outcome from a magic login error."""
        return cls(valid=False, error=exc.code, message=exc.detail)


@dataclass(frozen=True)
class TokenStatistics:
    """Aggregate counts over stored records.

    Attributes:
        total: Records currently stored.
        used: Records consumed (counted as used even if also expired).
        active: Unused, unexpired records.
        expired: Unused records past expiry.
    """

    total: int
    used: int
    active: int
    expired: int


class TokenManager:
    """Generates, validates, consumes and cleans up magic login tokens.

    Args:
        store: Per-user token store.
        expiry_hours: Token lifetime; clamped to 1-168 hours.
        hooks: Listener registry for lifecycle events.
        clock: Returns the current UTC time (injectable for tests).
    """

    def __init__(
        self,
        store: TokenStore,
        *,
        expiry_hours: int = DEFAULT_EXPIRY_HOURS,
        hooks: Hooks | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._expiry = timedelta(
            hours=max(MIN_TOKEN_EXPIRY_HOURS, min(MAX_TOKEN_EXPIRY_HOURS, expiry_hours))
        )
        self._hooks = hooks or Hooks()
        self._clock = clock

    @property
    def expiry(self) -> timedelta:
        """Configured token lifetime."""
        return self._expiry

    async def generate(
        self,
        email: str,
        user_id: int,
        issuing_ip: str = UNKNOWN_IP,
    ) -> str:
        """Issue a new token for ``user_id``, replacing any existing one.

        Args:
            email: User email, snapshotted into the record.
            user_id: Owner of the token.
            issuing_ip: Client IP that triggered issuance, if known.

        Returns:
            The plain token to embed in links.
        """
        now = self._clock()
        token = generate_token_value()
        record = TokenRecord(
            token=token,
            user_id=user_id,
            email=email,
            created_at=now,
            expires_at=now + self._expiry,
            used=False,
            issuing_ip=issuing_ip,
        )
        await self._store.set(record)
        logger.debug("Issued magic login token for user %s", user_id)

        self._hooks.emit(
            MagicLoginEvent.TOKEN_CREATED,
            token=token,
            user_id=user_id,
            record=record,
        )
        return token

    async def validate(self, token: str) -> ValidationOutcome:
        """Check ``token`` against the store.

        Expired and used records are deleted on first sight so a token can
        never be validated twice along the same path.

        Raises:
            TokenStoreError: The store could not be read or written.
        """
        try:
            record = await self._check(token)
        except MagicLoginError as exc:
            logger.info("Magic login token rejected: %s", exc.code)
            return ValidationOutcome.failure(exc)

        return ValidationOutcome(valid=True, user_id=record.user_id, record=record)

    async def _check(self, token: str) -> TokenRecord:
        if not token:
            raise TokenNotFoundError()

        now = self._clock()
        record = await self._find(token)

        if record is None:
            if await self._store.is_burned(token_digest(token), now):
                raise TokenAlreadyUsedError()
            raise TokenNotFoundError()

        if record.is_expired(now):
            await self._store.delete(record.user_id, token=record.token)
            raise TokenExpiredError()

        if record.used:
            await self._store.burn(token_digest(record.token), record.expires_at)
            await self._store.delete(record.user_id, token=record.token)
            raise TokenAlreadyUsedError()

        return record

    async def _find(self, token: str) -> TokenRecord | None:
        presented = token.encode()
        for user_id in await self._store.user_ids():
            try:
                record = await self._store.get(user_id)
            except MalformedTokenRecordError:
                logger.warning("Skipping malformed token record for user %s", user_id)
                continue
            if record is not None and hmac.compare_digest(
                record.token.encode(), presented
            ):
                return record
        return None

    async def consume(self, user_id: int) -> bool:
        """Mark the user's token used.

        Only the first caller for an unused record succeeds; a second
        concurrent consumer, or a user without a record, gets False.

        Raises:
            TokenStoreError: The store could not be written.
        """
        try:
            record = await self._store.mark_used(user_id, self._clock())
        except MalformedTokenRecordError:
            logger.warning("Cannot consume malformed token record for user %s", user_id)
            return False

        if record is None:
            return False

        self._hooks.emit(MagicLoginEvent.TOKEN_USED, user_id=user_id, record=record)
        return True

    async def sweep(self) -> int:
        """Delete expired, used and malformed records.

        A failure on one record is logged and the sweep moves on; the next
        scheduled run retries it.

        Returns:
            Number of records deleted.

        Raises:
            TokenStoreError: The store could not be enumerated at all.
        """
        now = self._clock()
        deleted = 0
        failures = 0

        for user_id in await self._store.user_ids():
            try:
                if await self._store.delete_if_terminal(user_id, now):
                    deleted += 1
            except TokenStoreError as exc:
                failures += 1
                logger.warning("Sweep failed for user %s: %s", user_id, exc.message)

        try:
            purged = await self._store.purge_burned(now)
        except TokenStoreError as exc:
            purged = 0
            failures += 1
            logger.warning("Burned token purge failed: %s", exc.message)

        logger.info(
            "Token sweep: %d deleted, %d burned digests purged, %d failures",
            deleted,
            purged,
            failures,
        )
        self._hooks.emit(MagicLoginEvent.TOKENS_CLEANED, count=deleted)
        return deleted

    async def statistics(self) -> TokenStatistics:
        """Classify every stored record as used, expired or active."""
        now = self._clock()
        total = used = active = expired = 0

        for user_id in await self._store.user_ids():
            try:
                record = await self._store.get(user_id)
            except MalformedTokenRecordError:
                continue
            if record is None:
                continue

            total += 1
            if record.used:
                used += 1
            elif record.is_expired(now):
                expired += 1
            else:
                active += 1

        return TokenStatistics(total=total, used=used, active=active, expired=expired)

    async def revoke_for_user(self, user_id: int) -> bool:
        """Delete the user's record (account teardown)."""
        deleted = await self._store.delete(user_id)
        if deleted:
            logger.info("Revoked magic login token for user %s", user_id)
        return deleted

    async def purge_all(self) -> int:
        """Delete every stored record (module teardown)."""
        deleted = await self._store.delete_all()
        logger.info("Purged %d magic login tokens", deleted)
        return deleted
