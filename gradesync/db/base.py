"""
db/base.py
----------
Declarative base shared by every class database.

All models hang off one metadata; the router runs create_all against each
class database the first time it is opened, so every class carries the
same set of tables. No model has a tenant column: isolation comes from
which engine a session is bound to.

TimestampMixin: server-side created_at / updated_at for tables,
selections and the legacy records. SavedCopy sets its own timestamp,
which orders the copies.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class TimestampMixin:
    """Adds server-side created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
