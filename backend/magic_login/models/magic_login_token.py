"""Magic login token models.

MagicLoginToken holds at most one live token per user (user_id is the
primary key, so reissuing overwrites). BurnedMagicLoginToken keeps the
digest of consumed tokens until their original expiry so repeated clicks
on a spent link are still reported as "used".
"""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Index, String, false
from sqlalchemy.orm import Mapped, mapped_column

from magic_login.models.base import Base


class MagicLoginToken(Base):
    """Active magic login token for a user.

    Attributes:
        user_id: Owner of the token (one row per user).
        token: Opaque token value, unique across rows.
        email: User email snapshot at issuance.
        created_at: Issuance timestamp.
        expires_at: Expiry timestamp.
        used: Consumption flag (compare-and-swap target).
        used_at: Consumption timestamp.
        issuing_ip: Client IP at issuance, or "UNKNOWN".
    """

    __tablename__ = "magic_login_tokens"
    __table_args__ = (
        Index("ix_magic_login_tokens_token", "token", unique=True),
        Index("ix_magic_login_tokens_expires_at", "expires_at"),
    )

    user_id: Mapped[int] = mapped_column(
        BigInteger,
        primary_key=True,
        autoincrement=False,
    )
    token: Mapped[str] = mapped_column(String(64), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    used: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
    )
    used_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    issuing_ip: Mapped[str] = mapped_column(
        String(45),
        nullable=False,
        default="UNKNOWN",
    )


class BurnedMagicLoginToken(Base):
    """SHA-256 digest of a consumed token, kept until the token's expiry."""

    __tablename__ = "magic_login_burned_tokens"
    __table_args__ = (Index("ix_magic_login_burned_tokens_expires_at", "expires_at"),)

    token_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
