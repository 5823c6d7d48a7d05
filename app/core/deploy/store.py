from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.database import AsyncSessionLocal


class CatalogStore:
    """
    Handle on the catalog database passed explicitly into every deploy call.

    Each unit of work (one data source group, one permission task) asks for its
    own session so concurrent tasks never share a transaction.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as session:
            yield session


def get_catalog_store() -> CatalogStore:
    return CatalogStore(AsyncSessionLocal)
