"""
services/snapshot_store.py
--------------------------
Reads and writes the collections of one class database.

Every method takes a session already bound to the class database
(see TenantDatabase.session()); isolation between classes therefore
never depends on a WHERE clause.

Saved copies are append-only. prune_subject_from_latest_copy is the one
operation allowed to rewrite an existing copy.
"""

from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.ext.asyncio import AsyncSession

from gradesync.core.logging import get_logger
from gradesync.db.base import utcnow
from gradesync.models import GradeTable, SavedCopy, Selection

logger = get_logger(__name__)

_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


# SQLSTATE undefined_table, reported by PostgreSQL drivers.
_UNDEFINED_TABLE = "42P01"


def _is_missing_selections(exc: Exception) -> bool:
    orig = getattr(exc, "orig", exc)
    if _UNDEFINED_TABLE in (getattr(orig, "sqlstate", None), getattr(orig, "pgcode", None)):
        return True
    return f"no such table: {Selection.__tablename__}" in str(orig).lower()


class SnapshotStore:

    # ── Tables ────────────────────────────────────────────────────────────────

    @staticmethod
    async def upsert_table(db: AsyncSession, sheet_name: str, data: Any) -> None:
        """Insert the sheet or replace its whole payload."""
        insert = _DIALECT_INSERTS.get(db.bind.dialect.name)
        if insert is not None:
            stmt = insert(GradeTable).values(sheet_name=sheet_name, data=data)
            stmt = stmt.on_conflict_do_update(
                index_elements=["sheet_name"],
                set_={"data": stmt.excluded.data, "updated_at": func.now()},
            )
            await db.execute(stmt)
            return

        result = await db.execute(
            select(GradeTable).where(GradeTable.sheet_name == sheet_name)
        )
        table = result.scalar_one_or_none()
        if table is None:
            db.add(GradeTable(sheet_name=sheet_name, data=data))
        else:
            table.data = data
        await db.flush()

    @staticmethod
    async def project_tables(db: AsyncSession) -> list[dict]:
        """All live tables as [{matiere, data}], in insertion order."""
        result = await db.execute(select(GradeTable).order_by(GradeTable.id))
        return [table.as_entry() for table in result.scalars().all()]

    # ── Saved copies ──────────────────────────────────────────────────────────

    @staticmethod
    async def append_copy(db: AsyncSession, tables: list[dict]) -> SavedCopy:
        copy = SavedCopy(timestamp=utcnow(), tables=tables, table_count=len(tables))
        db.add(copy)
        await db.flush()
        return copy

    @staticmethod
    async def latest_copy(
        db: AsyncSession, non_empty: bool = False
    ) -> Optional[SavedCopy]:
        """Newest saved copy; ties on timestamp go to the later insert."""
        query = select(SavedCopy)
        if non_empty:
            query = query.where(SavedCopy.table_count > 0)
        query = query.order_by(SavedCopy.timestamp.desc(), SavedCopy.id.desc()).limit(1)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def load_latest_copy(db: AsyncSession) -> list[dict]:
        """
        Tables of the newest saved copy that reflects the class.

        A pruned newest copy wins even when it is now empty, so a deleted
        subject never resurfaces from an older copy. Otherwise the newest
        non-empty copy is used. Either way, an empty answer falls back to
        the live tables, so a class whose first snapshot never got written
        is not mistaken for empty.
        """
        newest = await SnapshotStore.latest_copy(db)
        if newest is not None and newest.pruned:
            copy = newest
        else:
            copy = await SnapshotStore.latest_copy(db, non_empty=True)
        if copy is not None and copy.tables:
            return list(copy.tables)
        return await SnapshotStore.project_tables(db)

    @staticmethod
    async def prune_subject_from_latest_copy(
        db: AsyncSession, sheet_name: str
    ) -> Optional[SavedCopy]:
        """
        Drop a subject from the newest saved copy, rewriting that row in place.

        No new history entry is written; the row is tagged as pruned so
        load_latest_copy stops at it. Returns None when the class has no
        saved copy at all.
        """
        copy = await SnapshotStore.latest_copy(db)
        if copy is None:
            return None
        remaining = [
            entry for entry in (copy.tables or []) if entry.get("matiere") != sheet_name
        ]
        copy.tables = remaining
        copy.table_count = len(remaining)
        copy.pruned = True
        await db.flush()
        return copy

    # ── Selections ────────────────────────────────────────────────────────────

    @staticmethod
    async def upsert_selection(
        db: AsyncSession,
        sheet_name: str,
        cell_key: str,
        unit: Any,
        resources: Any,
    ) -> None:
        insert = _DIALECT_INSERTS.get(db.bind.dialect.name)
        if insert is not None:
            stmt = insert(Selection).values(
                sheet_name=sheet_name,
                cell_key=cell_key,
                unit=unit,
                resources=resources,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["sheet_name", "cell_key"],
                set_={
                    "unit": stmt.excluded.unit,
                    "resources": stmt.excluded.resources,
                    "updated_at": func.now(),
                },
            )
            await db.execute(stmt)
            return

        result = await db.execute(
            select(Selection).where(
                Selection.sheet_name == sheet_name, Selection.cell_key == cell_key
            )
        )
        selection = result.scalar_one_or_none()
        if selection is None:
            db.add(
                Selection(
                    sheet_name=sheet_name,
                    cell_key=cell_key,
                    unit=unit,
                    resources=resources,
                )
            )
        else:
            selection.unit = unit
            selection.resources = resources
        await db.flush()

    @staticmethod
    async def load_all_selections(db: AsyncSession) -> dict[str, dict[str, dict]]:
        """
        Every selection folded into {sheet_name: {cell_key: {unit, resources}}}.

        A class database without a selections collection has simply never
        recorded one, so that case yields {} rather than an error.
        """
        try:
            result = await db.execute(select(Selection))
        except (OperationalError, ProgrammingError) as exc:
            if not _is_missing_selections(exc):
                raise
            await db.rollback()
            logger.info("Selections collection not found, returning none")
            return {}

        by_sheet: dict[str, dict[str, dict]] = {}
        for selection in result.scalars().all():
            by_sheet.setdefault(selection.sheet_name, {})[selection.cell_key] = {
                "unit": selection.unit,
                "resources": selection.resources,
            }
        return by_sheet

    # ── Deletion ──────────────────────────────────────────────────────────────

    @staticmethod
    async def delete_by_sheet(db: AsyncSession, model: type, sheet_name: str) -> int:
        """Delete every row of `model` for a sheet; returns the row count."""
        result = await db.execute(delete(model).where(model.sheet_name == sheet_name))
        return result.rowcount or 0
