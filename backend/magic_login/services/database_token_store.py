"""Database-backed token store.

Each operation opens its own session and commits, so the store can be
shared across requests and the background sweep. SQLAlchemy failures are
raised as TokenStoreError; callers on the login path fail safe on it.
"""

import logging
from datetime import datetime

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from magic_login.core.errors import MalformedTokenRecordError, TokenStoreError
from magic_login.repositories.magic_login_token_repository import (
    MagicLoginTokenRepository,
)
from magic_login.schemas.magic_login import TokenRecord
from magic_login.services.token_store import TokenStore, token_digest

logger = logging.getLogger(__name__)


class DatabaseTokenStore(TokenStore):
    """Token store persisted in the magic_login_tokens table.

    Args:
        session_factory: Async session factory for DB access.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, user_id: int) -> TokenRecord | None:
        try:
            async with self._session_factory() as db:
                row = await MagicLoginTokenRepository.get(db, user_id)
        except SQLAlchemyError as exc:
            logger.error("Token lookup failed for user %s: %s", user_id, exc)
            raise TokenStoreError("Token lookup failed") from exc

        if row is None:
            return None
        try:
            return TokenRecord.model_validate(row)
        except ValidationError as exc:
            raise MalformedTokenRecordError(user_id) from exc

    async def set(self, record: TokenRecord) -> None:
        try:
            async with self._session_factory() as db:
                await MagicLoginTokenRepository.upsert(db, **record.model_dump())
                await db.commit()
        except SQLAlchemyError as exc:
            logger.error("Token write failed for user %s: %s", record.user_id, exc)
            raise TokenStoreError("Token write failed") from exc

    async def delete(self, user_id: int, *, token: str | None = None) -> bool:
        try:
            async with self._session_factory() as db:
                deleted = await MagicLoginTokenRepository.delete(
                    db, user_id, token=token
                )
                await db.commit()
        except SQLAlchemyError as exc:
            logger.error("Token delete failed for user %s: %s", user_id, exc)
            raise TokenStoreError("Token delete failed") from exc
        return deleted > 0

    async def user_ids(self) -> list[int]:
        try:
            async with self._session_factory() as db:
                return await MagicLoginTokenRepository.list_user_ids(db)
        except SQLAlchemyError as exc:
            logger.error("Token enumeration failed: %s", exc)
            raise TokenStoreError("Token enumeration failed") from exc

    async def mark_used(self, user_id: int, used_at: datetime) -> TokenRecord | None:
        try:
            async with self._session_factory() as db:
                row = await MagicLoginTokenRepository.mark_used(db, user_id, used_at)
                if row is None:
                    return None
                # Parse before commit; a malformed row rolls back unconsumed
                try:
                    record = TokenRecord.model_validate(row)
                except ValidationError as exc:
                    raise MalformedTokenRecordError(user_id) from exc
                await db.commit()
        except SQLAlchemyError as exc:
            logger.error("Token consume failed for user %s: %s", user_id, exc)
            raise TokenStoreError("Token consume failed") from exc
        return record

    async def delete_if_terminal(self, user_id: int, now: datetime) -> bool:
        try:
            async with self._session_factory() as db:
                deleted = await MagicLoginTokenRepository.delete_if_terminal(
                    db, user_id, now
                )
                if deleted is not None and deleted.used:
                    await MagicLoginTokenRepository.burn(
                        db, token_digest(deleted.token), deleted.expires_at
                    )
                await db.commit()
        except SQLAlchemyError as exc:
            logger.error("Token cleanup failed for user %s: %s", user_id, exc)
            raise TokenStoreError("Token cleanup failed") from exc
        return deleted is not None

    async def delete_all(self) -> int:
        try:
            async with self._session_factory() as db:
                deleted = await MagicLoginTokenRepository.delete_all(db)
                await db.commit()
        except SQLAlchemyError as exc:
            logger.error("Token purge failed: %s", exc)
            raise TokenStoreError("Token purge failed") from exc
        return deleted

    async def burn(self, token_hash: str, expires_at: datetime) -> None:
        try:
            async with self._session_factory() as db:
                await MagicLoginTokenRepository.burn(db, token_hash, expires_at)
                await db.commit()
        except SQLAlchemyError as exc:
            logger.error("Token burn failed: %s", exc)
            raise TokenStoreError("Token burn failed") from exc

    async def is_burned(self, token_hash: str, now: datetime) -> bool:
        try:
            async with self._session_factory() as db:
                return await MagicLoginTokenRepository.is_burned(db, token_hash, now)
        except SQLAlchemyError as exc:
            logger.error("Burned token lookup failed: %s", exc)
            raise TokenStoreError("Burned token lookup failed") from exc

    async def purge_burned(self, now: datetime) -> int:
        try:
            async with self._session_factory() as db:
                purged = await MagicLoginTokenRepository.purge_burned(db, now)
                await db.commit()
        except SQLAlchemyError as exc:
            logger.error("Burned token purge failed: %s", exc)
            raise TokenStoreError("Burned token purge failed") from exc
        return purged
