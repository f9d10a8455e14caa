"""
db/router.py
------------
Resolves a class name to its isolated logical database.

Each class owns one database named <TENANT_DB_PREFIX><normalised name>,
where every character outside [A-Za-z0-9] becomes "_":

  sqlite+aiosqlite:///./data         → ./data/Classe_6e_B.db
  postgresql+asyncpg://u:p@host/postgres → database "Classe_6e_B" on host
                                         (created through the URL's database)

Concurrency contract:
  - Read-through cache keyed by the *original* class name.
  - Populate-on-miss is idempotent. Coroutines resolving the same new class
    while it is being opened await the one open already in flight; a failed
    open is forgotten so the next resolve tries again. Nothing is locked and
    nothing raises.
  - Handles live until dispose() is called at application shutdown.
"""

import asyncio
import re
from pathlib import Path
from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from gradesync.core.logging import get_logger
from gradesync.db.session import TenantDatabase
from gradesync.models import Base

logger = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9]")


def tenant_database_name(tenant_name: str, prefix: str = "Classe_") -> str:
    """Storage-safe database name for a class, e.g. '6e B' → 'Classe_6e_B'."""
    return f"{prefix}{_UNSAFE_CHARS.sub('_', tenant_name)}"


class TenantDatabaseRouter:

    def __init__(
        self,
        database_url: Optional[str],
        prefix: str = "Classe_",
        echo: bool = False,
    ) -> None:
        self._database_url = database_url
        self._prefix = prefix
        self._echo = echo
        self._databases: dict[str, TenantDatabase] = {}
        self._opening: dict[str, asyncio.Future] = {}

    def __contains__(self, tenant_name: str) -> bool:
        return tenant_name in self._databases

    def __len__(self) -> int:
        return len(self._databases)

    async def resolve(self, tenant_name: str) -> Optional[TenantDatabase]:
        """
        Return the handle for a class, opening the database on first use.

        Returns None when the name is blank, no DATABASE_URL is configured,
        or the connection fails. Callers treat None as "service unavailable
        for this class" and fail the request; nothing is retried here.
        """
        cached = self._databases.get(tenant_name)
        if cached is not None:
            return cached

        if not tenant_name or not tenant_name.strip():
            logger.warning("Refusing to resolve blank class name")
            return None
        if not self._database_url:
            logger.error("DATABASE_URL is not defined", class_name=tenant_name)
            return None

        opening = self._opening.get(tenant_name)
        if opening is None:
            opening = asyncio.ensure_future(self._connect(tenant_name))
            self._opening[tenant_name] = opening
            opening.add_done_callback(lambda _: self._opening.pop(tenant_name, None))
        # Shielded: one caller going away must not cancel the shared open.
        return await asyncio.shield(opening)

    async def _connect(self, tenant_name: str) -> Optional[TenantDatabase]:
        database_name = tenant_database_name(tenant_name, self._prefix)
        try:
            engine = await self._open(database_name)
        except Exception as exc:
            logger.error(
                "Error connecting to class database",
                class_name=tenant_name,
                database=database_name,
                error=str(exc),
                exc_info=True,
            )
            return None

        handle = TenantDatabase(
            tenant_name=tenant_name, database_name=database_name, engine=engine
        )
        self._databases[tenant_name] = handle
        logger.info("Connected to class database", database=database_name)
        return handle

    async def dispose(self) -> None:
        """Close every cached engine. Call once, at shutdown."""
        databases = list(self._databases.values())
        self._databases.clear()
        for database in databases:
            await database.dispose()
        logger.info("Disposed class databases", count=len(databases))

    # ── Internals ────────────────────────────────────────────────────────────

    async def _open(self, database_name: str) -> AsyncEngine:
        base_url = make_url(self._database_url)

        if base_url.get_backend_name() == "sqlite":
            url = self._sqlite_url(base_url, database_name)
            engine = create_async_engine(
                url, echo=self._echo, connect_args={"timeout": 30}
            )
        else:
            if base_url.get_backend_name() == "postgresql":
                await self._ensure_postgres_database(base_url, database_name)
            engine = create_async_engine(
                base_url.set(database=database_name),
                echo=self._echo,
                pool_size=5,
                max_overflow=10,
                pool_pre_ping=True,
                pool_recycle=3600,
            )

        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except Exception:
            await engine.dispose()
            raise
        return engine

    @staticmethod
    def _sqlite_url(base_url: URL, database_name: str) -> URL:
        directory = base_url.database
        if not directory or directory == ":memory:":
            raise ValueError("SQLite DATABASE_URL must point at a directory")
        path = Path(directory)
        path.mkdir(parents=True, exist_ok=True)
        return base_url.set(database=str(path / f"{database_name}.db"))

    async def _ensure_postgres_database(self, base_url: URL, database_name: str) -> None:
        admin = create_async_engine(
            base_url, isolation_level="AUTOCOMMIT", poolclass=NullPool
        )
        try:
            async with admin.connect() as conn:
                exists = await conn.scalar(
                    text("SELECT 1 FROM pg_database WHERE datname = :name"),
                    {"name": database_name},
                )
                if exists:
                    return
                try:
                    await conn.execute(text(f'CREATE DATABASE "{database_name}"'))
                    logger.info("Created class database", database=database_name)
                except ProgrammingError:
                    # Created by a concurrent first access in the meantime.
                    logger.info("Class database already exists", database=database_name)
        finally:
            await admin.dispose()
