"""SQLAlchemy declarative base.

All ORM models share this base so Alembic and test fixtures can create
the full schema from ``Base.metadata``.
"""

from datetime import datetime

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        datetime: DateTime(timezone=True),
    }
