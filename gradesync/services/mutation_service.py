"""
services/mutation_service.py
----------------------------
Client-issued mutations of a class database.

This service is the only writer of tables, selections and saved copies.

Consistency model:
  - No cross-request locking. Concurrent saves of the same sheet are
    last-write-wins, and the saved copy appended by each save reflects
    whatever set of tables its read happened to observe.
  - save_table is two transactions (upsert, then snapshot). When the
    snapshot step fails the upsert stays committed and SnapshotWriteError
    is raised; the next successful save brings the history back in line.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from gradesync.core.exceptions import SnapshotWriteError
from gradesync.core.logging import get_logger
from gradesync.db.session import TenantDatabase
from gradesync.models import GradeTable, Resource, Selection, Unit
from gradesync.services.snapshot_store import SnapshotStore

logger = get_logger(__name__)

# Collections purged when a subject is deleted, in reporting order.
_SUBJECT_COLLECTIONS = (
    ("tables", GradeTable),
    ("selections", Selection),
    ("resources", Resource),
    ("units", Unit),
)


@dataclass
class SubjectDeletion:
    sheet_name: str
    removed: dict[str, int] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)
    copy_pruned: bool = False

    @property
    def complete(self) -> bool:
        return not self.failures


class MutationService:

    @staticmethod
    async def save_table(db: TenantDatabase, sheet_name: str, data: Any) -> None:
        """
        Upsert a sheet, then append a saved copy of every table in the class.

        Raises:
            SnapshotWriteError: the sheet was saved but the copy was not.
        """
        async with db.session() as session:
            await SnapshotStore.upsert_table(session, sheet_name, data)

        try:
            async with db.session() as session:
                tables = await SnapshotStore.project_tables(session)
                copy = await SnapshotStore.append_copy(session, tables)
        except Exception as exc:
            logger.error(
                "Saved copy append failed after table upsert",
                database=db.database_name,
                sheet_name=sheet_name,
                error=str(exc),
                exc_info=True,
            )
            raise SnapshotWriteError(sheet_name) from exc

        logger.info(
            "Table saved",
            database=db.database_name,
            sheet_name=sheet_name,
            copy_id=copy.id,
            tables=copy.table_count,
        )

    @staticmethod
    async def record_selection(
        db: TenantDatabase,
        sheet_name: str,
        cell_key: str,
        unit: Any,
        resources: Any,
    ) -> None:
        async with db.session() as session:
            await SnapshotStore.upsert_selection(
                session, sheet_name, cell_key, unit, resources
            )
        logger.debug(
            "Selection recorded",
            database=db.database_name,
            sheet_name=sheet_name,
            cell_key=cell_key,
        )

    @staticmethod
    async def delete_subject_data(db: TenantDatabase, sheet_name: str) -> SubjectDeletion:
        """
        Remove a subject from every collection, then from the newest saved copy.

        Each collection is purged in its own transaction and all of them are
        awaited together; one failing never stops the others. Failures are
        logged and reported in the returned SubjectDeletion. Deleting a subject
        that does not exist succeeds.

        Raises:
            Exception: only if rewriting the newest saved copy fails.
        """
        report = SubjectDeletion(sheet_name=sheet_name)

        outcomes = await asyncio.gather(
            *(
                MutationService._purge(db, model, sheet_name)
                for _, model in _SUBJECT_COLLECTIONS
            ),
            return_exceptions=True,
        )
        for (label, _), outcome in zip(_SUBJECT_COLLECTIONS, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                report.failures[label] = str(outcome)
                logger.warning(
                    "Subject purge failed for collection",
                    database=db.database_name,
                    collection=label,
                    sheet_name=sheet_name,
                    error=str(outcome),
                )
            else:
                report.removed[label] = outcome

        async with db.session() as session:
            copy = await SnapshotStore.prune_subject_from_latest_copy(session, sheet_name)
            report.copy_pruned = copy is not None

        logger.info(
            "Subject data deleted",
            database=db.database_name,
            sheet_name=sheet_name,
            removed=report.removed,
            failed=sorted(report.failures),
        )
        return report

    @staticmethod
    async def _purge(db: TenantDatabase, model: type, sheet_name: str) -> int:
        async with db.session() as session:
            return await SnapshotStore.delete_by_sheet(session, model, sheet_name)
