"""SQLAlchemy ORM models for the magic login service.

- magic_login_token.py: MagicLoginToken, BurnedMagicLoginToken
"""

from magic_login.models.base import Base
from magic_login.models.magic_login_token import BurnedMagicLoginToken, MagicLoginToken

__all__ = [
    "Base",
    "BurnedMagicLoginToken",
    "MagicLoginToken",
]
