"""
models/table.py
---------------
Grade table (one sheet per subject) ORM model.

sheet_name is unique within a class database; saving an existing sheet
replaces its payload wholesale, there is no partial merge.
"""

from typing import Any

from sqlalchemy import JSON, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from gradesync.db.base import Base, TimestampMixin


class GradeTable(Base, TimestampMixin):
    __tablename__ = "tables"

    # Integer key keeps "find all" in insertion order across backends
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sheet_name: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    data: Mapped[Any] = mapped_column(JSON, nullable=True)

    def as_entry(self) -> dict:
        """Project to the {matiere, data} shape stored in saved copies."""
        return {"matiere": self.sheet_name, "data": self.data}

    def __repr__(self) -> str:
        return f"<GradeTable id={self.id} sheet_name={self.sheet_name}>"
