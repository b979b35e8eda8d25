"""
Agora - Catalog Log
=====================
Append-only relational log of product entries.

The SQL backend keeps a single table, created on the first write:

    products
        id       INTEGER PRIMARY KEY AUTOINCREMENT   -- append order
        payload  JSON                                -- the product as sent

Product entries are open-schema, so the whole record lives in one JSON
column instead of one column per field.

Usage:
    log = SqlCatalogLog("sqlite+aiosqlite:///data/products.sqlite3")
    await log.ensure_schema()
    await log.append_batch([{"name": "pen"}, {"name": "cup"}])
    rows = await log.list_all()
"""

import logging
from typing import Any

from sqlalchemy import JSON, Column, Integer, MetaData, Table, insert, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine

from agora.errors import StorageConnectionFailure

logger = logging.getLogger(__name__)

metadata = MetaData()

products_table = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("payload", JSON, nullable=False),
)


class CatalogLog:
    """Interface shared by all catalog log backends."""

    async def ensure_schema(self) -> None:
        raise NotImplementedError

    async def append_batch(self, items: list[dict[str, Any]]) -> None:
        raise NotImplementedError

    async def list_all(self) -> list[dict[str, Any]]:
        raise NotImplementedError

    async def ping(self) -> None:
        """Raise StorageConnectionFailure if the backend is unreachable."""

    async def close(self) -> None:
        """Release backend resources."""


class InMemoryCatalogLog(CatalogLog):
    """Catalog log kept in a list for the lifetime of the process."""

    def __init__(self):
        self._rows: list[dict[str, Any]] = []

    async def ensure_schema(self) -> None:
        pass

    async def append_batch(self, items: list[dict[str, Any]]) -> None:
        self._rows.extend(dict(item) for item in items)

    async def list_all(self) -> list[dict[str, Any]]:
        return [dict(row) for row in self._rows]


class SqlCatalogLog(CatalogLog):
    """Catalog log stored through an SQLAlchemy async engine."""

    def __init__(self, url: str):
        self.url = url
        self._engine = create_async_engine(url, echo=False, future=True)
        self._schema_ready = False

    async def ensure_schema(self) -> None:
        if self._schema_ready:
            return
        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
        self._schema_ready = True
        logger.debug("Catalog schema ready at %s", self.url)

    async def append_batch(self, items: list[dict[str, Any]]) -> None:
        if not items:
            return
        async with self._engine.begin() as conn:
            await conn.execute(
                insert(products_table),
                [{"payload": item} for item in items],
            )

    async def list_all(self) -> list[dict[str, Any]]:
        await self.ensure_schema()
        async with self._engine.connect() as conn:
            result = await conn.execute(
                select(products_table.c.payload).order_by(products_table.c.id)
            )
            return [row.payload for row in result]

    async def ping(self) -> None:
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            raise StorageConnectionFailure("catalog log (SQL)", e) from e

    async def close(self) -> None:
        await self._engine.dispose()
