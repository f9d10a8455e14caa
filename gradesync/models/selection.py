"""
models/selection.py
-------------------
Per-cell selection metadata (unit + resources).

Selections point at a table by sheet_name only; there is no foreign key,
so deleting a subject has to purge both collections explicitly.
"""

from typing import Any

from sqlalchemy import JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from gradesync.db.base import Base, TimestampMixin, generate_uuid


class Selection(Base, TimestampMixin):
    __tablename__ = "selections"
    __table_args__ = (
        UniqueConstraint("sheet_name", "cell_key", name="uq_selections_sheet_cell"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    sheet_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    cell_key: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[Any] = mapped_column(JSON, nullable=True)
    resources: Mapped[Any] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<Selection sheet_name={self.sheet_name} cell_key={self.cell_key}>"
