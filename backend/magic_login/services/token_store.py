"""Token store interface and in-memory implementation.

The store maps a user id to at most one TokenRecord. Writing a record for
a user replaces whatever was stored before (reissue overwrites). It also
keeps a ledger of burned token digests so consumed tokens can still be
recognised after their record is gone.

Two operations are conditional so concurrent requests stay consistent:
- mark_used flips ``used`` from False to True only if it is still False
  (exactly one of two racing consumers wins)
- delete_if_terminal only deletes a record that is used, expired or
  malformed at the moment of deletion (a sweep never removes a record
  that became live again through reissue), and burns the digest of a
  used record in the same step

InMemoryTokenStore serialises access with an asyncio.Lock. It is safe for
a single event loop; multi-process deployments use the database store.
"""

import asyncio
import hashlib
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from magic_login.core.errors import MalformedTokenRecordError
from magic_login.schemas.magic_login import TokenRecord

logger = logging.getLogger(__name__)


def token_digest(token: str) -> str:
    """SHA-256 hex digest used for the burned-token ledger."""
    return hashlib.sha256(token.encode()).hexdigest()


class TokenStore(ABC):
    """Abstract per-user token record store."""

    @abstractmethod
    async def get(self, user_id: int) -> TokenRecord | None:
        """Return the user's record, or None if there is none.

        Raises:
            MalformedTokenRecordError: A record exists but cannot be parsed.
            TokenStoreError: The backend could not be read.
        """

    @abstractmethod
    async def set(self, record: TokenRecord) -> None:
        """Store ``record`` for ``record.user_id``, replacing any prior record."""

    @abstractmethod
    async def delete(self, user_id: int, *, token: str | None = None) -> bool:
        """Delete the user's record.

        Args:
            user_id: Owner of the record.
            token: If given, only delete when the stored token still equals it.

        Returns:
            True if a record was deleted.
        """

    @abstractmethod
    async def user_ids(self) -> list[int]:
        """Ids of all users currently holding a record."""

    @abstractmethod
    async def mark_used(self, user_id: int, used_at: datetime) -> TokenRecord | None:
        """Flip ``used`` to True if the record exists and is unused.

        Returns:
            The updated record, or None if there was nothing to consume.
        """

    @abstractmethod
    async def delete_if_terminal(self, user_id: int, now: datetime) -> bool:
        """Delete the record only if it is used, expired or malformed.

        A deleted used record has its token digest burned until the
        record's expiry, so the token keeps reading as used.

        Returns:
            True if a record was deleted.
        """

    @abstractmethod
    async def delete_all(self) -> int:
        """Delete every record. Returns the number deleted."""

    @abstractmethod
    async def burn(self, token_hash: str, expires_at: datetime) -> None:
        """Remember a consumed token digest until ``expires_at``."""

    @abstractmethod
    async def is_burned(self, token_hash: str, now: datetime) -> bool:
        """Whether ``token_hash`` was burned and has not yet expired."""

    @abstractmethod
    async def purge_burned(self, now: datetime) -> int:
        """Forget burned digests past their expiry. Returns the number removed."""


class InMemoryTokenStore(TokenStore):
    """Token store backed by process memory.

    Records are held as plain dicts and parsed on read, so a damaged entry
    surfaces as MalformedTokenRecordError exactly like a bad database row.
    """

    def __init__(self) -> None:
        self._records: dict[int, Any] = {}
        self._burned: dict[str, datetime] = {}
        self._lock = asyncio.Lock()

    def _parse(self, user_id: int, payload: Any) -> TokenRecord:
        try:
            return TokenRecord.model_validate(payload)
        except ValidationError as exc:
            raise MalformedTokenRecordError(user_id) from exc

    async def get(self, user_id: int) -> TokenRecord | None:
        async with self._lock:
            payload = self._records.get(user_id)
            if payload is None:
                return None
            return self._parse(user_id, payload)

    async def set(self, record: TokenRecord) -> None:
        async with self._lock:
            self._records[record.user_id] = record.model_dump()

    async def delete(self, user_id: int, *, token: str | None = None) -> bool:
        async with self._lock:
            payload = self._records.get(user_id)
            if payload is None:
                return False
            if token is not None and (
                not isinstance(payload, dict) or payload.get("token") != token
            ):
                return False
            del self._records[user_id]
            return True

    async def user_ids(self) -> list[int]:
        async with self._lock:
            return list(self._records)

    async def mark_used(self, user_id: int, used_at: datetime) -> TokenRecord | None:
        async with self._lock:
            payload = self._records.get(user_id)
            if payload is None:
                return None
            record = self._parse(user_id, payload)
            if record.used:
                return None
            updated = record.model_copy(update={"used": True, "used_at": used_at})
            self._records[user_id] = updated.model_dump()
            return updated

    async def delete_if_terminal(self, user_id: int, now: datetime) -> bool:
        async with self._lock:
            payload = self._records.get(user_id)
            if payload is None:
                return False
            try:
                record = self._parse(user_id, payload)
            except MalformedTokenRecordError:
                logger.warning("Deleting malformed token record for user %s", user_id)
                del self._records[user_id]
                return True
            if not record.is_terminal(now):
                return False
            if record.used:
                self._burned[token_digest(record.token)] = record.expires_at
            del self._records[user_id]
            return True

    async def delete_all(self) -> int:
        async with self._lock:
            count = len(self._records)
            self._records.clear()
            return count

    async def burn(self, token_hash: str, expires_at: datetime) -> None:
        async with self._lock:
            self._burned[token_hash] = expires_at

    async def is_burned(self, token_hash: str, now: datetime) -> bool:
        async with self._lock:
            expires_at = self._burned.get(token_hash)
            return expires_at is not None and expires_at >= now

    async def purge_burned(self, now: datetime) -> int:
        async with self._lock:
            stale = [h for h, expires_at in self._burned.items() if expires_at < now]
            for token_hash in stale:
                del self._burned[token_hash]
            return len(stale)

    def put_raw(self, user_id: int, payload: Any) -> None:
        """Store an unvalidated payload (for testing and data imports)."""
        self._records[user_id] = payload

    def clear(self) -> None:
        """Clear all records and burned digests (for testing)."""
        self._records.clear()
        self._burned.clear()
