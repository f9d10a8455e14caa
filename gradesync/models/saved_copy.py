"""
models/saved_copy.py
--------------------
Timestamped snapshot of every table in a class.

Rows are append-only. The single exception is
SnapshotStore.prune_subject_from_latest_copy, which rewrites the newest
row when a subject is deleted and tags it as pruned. A pruned newest
copy is authoritative: older copies still holding the deleted subject
are never read back past it.

table_count mirrors len(tables) so "newest non-empty copy" is a plain
indexed comparison instead of a dialect-specific JSON length query.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from gradesync.db.base import Base, utcnow


class SavedCopy(Base):
    __tablename__ = "saved_copies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    tables: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    table_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pruned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return f"<SavedCopy id={self.id} tables={self.table_count} pruned={self.pruned}>"
