"""
db/session.py
-------------
Per-class database handle: an async engine plus its session factory.

Design decisions:
  - One AsyncEngine per class database, owned by the TenantDatabaseRouter.
  - expire_on_commit=False: avoids lazy-load errors after commit in async
    context (attributes are already loaded, no implicit SELECT needed).
  - Every session() block is its own transaction: committed on success,
    rolled back on any exception, which is then re-raised.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker


@dataclass
class TenantDatabase:
    tenant_name: str
    database_name: str
    engine: AsyncEngine
    sessionmaker: async_sessionmaker[AsyncSession] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.sessionmaker = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Yield a session bound to this class database.

        Usage:
            async with tenant_db.session() as session:
                await session.execute(...)
        """
        async with self.sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def dispose(self) -> None:
        await self.engine.dispose()
