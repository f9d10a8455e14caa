"""
models/resource.py
------------------
Legacy per-sheet resource and unit records.

Older clients stored these outside of selections. Nothing writes them
any more, but subject deletion still purges them.
"""

from typing import Any

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from gradesync.db.base import Base, TimestampMixin, generate_uuid


class Resource(Base, TimestampMixin):
    __tablename__ = "resources"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    sheet_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    payload: Mapped[Any] = mapped_column(JSON, nullable=True)


class Unit(Base, TimestampMixin):
    __tablename__ = "units"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    sheet_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    payload: Mapped[Any] = mapped_column(JSON, nullable=True)
