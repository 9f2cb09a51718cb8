"""Create magic login token tables.

Revision ID: 001_magic_login_tokens
Revises:
Create Date: 2026-10-16

magic_login_tokens: one live token per user, compare-and-swap on used.
magic_login_burned_tokens: digests of consumed tokens until their expiry.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001_magic_login_tokens"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # user_id is the primary key: reissuing a token overwrites the row
    op.create_table(
        "magic_login_tokens",
        sa.Column("user_id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("token", sa.String(64), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "used", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "issuing_ip", sa.String(45), nullable=False, server_default="UNKNOWN"
        ),
    )
    op.create_index(
        "ix_magic_login_tokens_token", "magic_login_tokens", ["token"], unique=True
    )
    op.create_index(
        "ix_magic_login_tokens_expires_at", "magic_login_tokens", ["expires_at"]
    )

    op.create_table(
        "magic_login_burned_tokens",
        sa.Column("token_hash", sa.String(64), primary_key=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_magic_login_burned_tokens_expires_at",
        "magic_login_burned_tokens",
        ["expires_at"],
    )


def downgrade() -> None:
    op.drop_index(
        "ix_magic_login_burned_tokens_expires_at",
        table_name="magic_login_burned_tokens",
    )
    op.drop_table("magic_login_burned_tokens")
    op.drop_index("ix_magic_login_tokens_expires_at", table_name="magic_login_tokens")
    op.drop_index("ix_magic_login_tokens_token", table_name="magic_login_tokens")
    op.drop_table("magic_login_tokens")
