"""Repository for MagicLoginToken and BurnedMagicLoginToken operations.

One row per user in magic_login_tokens; consumption and sweep deletes are
single conditional statements so they stay correct under concurrency.
"""

from datetime import datetime

from sqlalchemy import Row, delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from magic_login.models.magic_login_token import BurnedMagicLoginToken, MagicLoginToken


class MagicLoginTokenRepository:
    """Stateless repository for magic login token tables.

    All methods are static; the class holds no state.
    """

    @staticmethod
    async def get(db: AsyncSession, user_id: int) -> MagicLoginToken | None:
        """Look up the token row for a user.

        Args:
            db: Async database session.
            user_id: Owner of the token.

        Returns:
            MagicLoginToken if found, None otherwise.
        """
        stmt = select(MagicLoginToken).where(MagicLoginToken.user_id == user_id)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def upsert(
        db: AsyncSession,
        *,
        user_id: int,
        token: str,
        email: str,
        created_at: datetime,
        expires_at: datetime,
        used: bool,
        used_at: datetime | None,
        issuing_ip: str,
    ) -> MagicLoginToken:
        """Insert or replace the user's token row.

        Args:
            db: Async database session.
            user_id: Owner of the token (primary key).
            token: Token value.
            email: Email snapshot.
            created_at: Issuance timestamp.
            expires_at: Expiry timestamp.
            used: Consumption flag.
            used_at: Consumption timestamp.
            issuing_ip: Client IP at issuance.

        Returns:
            The merged MagicLoginToken.
        """
        row = await db.merge(
            MagicLoginToken(
                user_id=user_id,
                token=token,
                email=email,
                created_at=created_at,
                expires_at=expires_at,
                used=used,
                used_at=used_at,
                issuing_ip=issuing_ip,
            )
        )
        await db.flush()
        return row

    @staticmethod
    async def delete(
        db: AsyncSession,
        user_id: int,
        *,
        token: str | None = None,
    ) -> int:
        """Delete the user's row, optionally only if the token still matches.

        Returns:
            Number of deleted rows (0 or 1).
        """
        stmt = delete(MagicLoginToken).where(MagicLoginToken.user_id == user_id)
        if token is not None:
            stmt = stmt.where(MagicLoginToken.token == token)
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count

    @staticmethod
    async def list_user_ids(db: AsyncSession) -> list[int]:
        """Ids of all users holding a token row."""
        result = await db.execute(select(MagicLoginToken.user_id))
        return list(result.scalars().all())

    @staticmethod
    async def mark_used(
        db: AsyncSession, user_id: int, used_at: datetime
    ) -> MagicLoginToken | None:
        """Set used=True only where the row is still unused.

        The updated row comes back from the same statement, so a sweep that
        deletes it right after the commit cannot hide the win.

        Returns:
            The updated row, or None if another request consumed it first
            or there is no row.
        """
        stmt = (
            update(MagicLoginToken)
            .where(
                MagicLoginToken.user_id == user_id,
                MagicLoginToken.used.is_(False),
            )
            .values(used=True, used_at=used_at)
            .returning(MagicLoginToken)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def delete_if_terminal(
        db: AsyncSession, user_id: int, now: datetime
    ) -> Row[tuple[str, bool, datetime]] | None:
        """Delete the user's row if it is used, expired or malformed.

        Returns:
            The deleted row's (token, used, expires_at), or None if nothing
            was deleted.
        """
        stmt = (
            delete(MagicLoginToken)
            .where(
                MagicLoginToken.user_id == user_id,
                or_(
                    MagicLoginToken.used.is_(True),
                    MagicLoginToken.expires_at < now,
                    MagicLoginToken.expires_at <= MagicLoginToken.created_at,
                ),
            )
            .returning(
                MagicLoginToken.token,
                MagicLoginToken.used,
                MagicLoginToken.expires_at,
            )
        )
        result = await db.execute(stmt)
        return result.one_or_none()

    @staticmethod
    async def delete_all(db: AsyncSession) -> int:
        """Delete every token row."""
        result = await db.execute(delete(MagicLoginToken))
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count

    @staticmethod
    async def burn(db: AsyncSession, token_hash: str, expires_at: datetime) -> None:
        """Record a consumed token digest."""
        await db.merge(
            BurnedMagicLoginToken(token_hash=token_hash, expires_at=expires_at)
        )
        await db.flush()

    @staticmethod
    async def is_burned(db: AsyncSession, token_hash: str, now: datetime) -> bool:
        """Whether the digest is burned and unexpired."""
        stmt = select(BurnedMagicLoginToken.token_hash).where(
            BurnedMagicLoginToken.token_hash == token_hash,
            BurnedMagicLoginToken.expires_at >= now,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def purge_burned(db: AsyncSession, now: datetime) -> int:
        """Delete burned digests past their expiry."""
        stmt = delete(BurnedMagicLoginToken).where(
            BurnedMagicLoginToken.expires_at < now,
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count
