"""
SCHEMA PROVIDER - Read live column metadata from external warehouses

Purpose:
    1. Resolve credentials for a data source (secret reference + source type)
    2. Fetch every column of a batch of (table, schema) pairs in ONE round trip

The deploy pipeline only depends on the SchemaProvider interface. Both calls
are one fallible unit per data source group: any SchemaProviderError fails
the whole group.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from sqlalchemy import column, func, select, table, tuple_
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.ext.asyncio import create_async_engine

from app.core.config import settings
from app.core.deploy.errors import SchemaProviderError

logger = logging.getLogger(__name__)

TableRef = Tuple[str, str]  # (table, schema)


@dataclass(frozen=True)
class LiveColumn:
    schema_name: str
    table_name: str
    column_name: str
    native_type: str


@dataclass(frozen=True)
class Credentials:
    source_type: str
    url: str


class SchemaProvider(ABC):
    @abstractmethod
    async def fetch_credentials(self, secret_ref: str, source_type: str) -> Credentials:
        ...

    @abstractmethod
    async def fetch_columns_batch(
        self,
        table_refs: List[TableRef],
        credentials: Credentials,
        database: Optional[str] = None,
    ) -> List[LiveColumn]:
        ...


# Warehouse kinds we can introspect -> async SQLAlchemy driver
SOURCE_DRIVERS: Dict[str, str] = {
    "postgres": "postgresql+asyncpg",
    "redshift": "postgresql+asyncpg",
    "supabase": "postgresql+asyncpg",
}

information_schema_columns = table(
    "columns",
    column("table_schema"),
    column("table_name"),
    column("column_name"),
    column("data_type"),
    schema="information_schema",
)


def build_columns_query(table_refs: List[TableRef]):
    """SELECT over information_schema.columns for the given tables, matched case-insensitively."""
    wanted = sorted({(schema.lower(), name.lower()) for name, schema in table_refs})
    c = information_schema_columns.c
    return (
        select(c.table_schema, c.table_name, c.column_name, c.data_type)
        .where(tuple_(func.lower(c.table_schema), func.lower(c.table_name)).in_(wanted))
        .order_by(c.table_schema, c.table_name)
    )


def to_live_columns(rows) -> List[LiveColumn]:
    return [
        LiveColumn(
            schema_name=row.table_schema,
            table_name=row.table_name,
            column_name=row.column_name,
            native_type=row.data_type,
        )
        for row in rows
    ]


class WarehouseSchemaProvider(SchemaProvider):
    """
    Reads information_schema.columns through a short lived async engine.

    Credentials are SQLAlchemy URLs looked up by secret reference in
    settings.WAREHOUSE_CREDENTIALS.
    """

    def __init__(self, secrets: Optional[Dict[str, str]] = None):
        self.secrets = settings.WAREHOUSE_CREDENTIALS if secrets is None else secrets

    async def fetch_credentials(self, secret_ref: str, source_type: str) -> Credentials:
        driver = SOURCE_DRIVERS.get(source_type.lower())
        if driver is None:
            raise SchemaProviderError(f"Unsupported data source type '{source_type}'")

        raw_url = self.secrets.get(secret_ref)
        if not raw_url:
            raise SchemaProviderError(f"No credentials stored for secret '{secret_ref}'")

        try:
            url = make_url(raw_url).set(drivername=driver)
        except ArgumentError as error:
            raise SchemaProviderError(
                f"Invalid credentials for secret '{secret_ref}': {error}"
            ) from error

        return Credentials(
            source_type=source_type.lower(),
            url=url.render_as_string(hide_password=False),
        )

    async def fetch_columns_batch(
        self,
        table_refs: List[TableRef],
        credentials: Credentials,
        database: Optional[str] = None,
    ) -> List[LiveColumn]:
        if not table_refs:
            return []

        query = build_columns_query(table_refs)
        engine = None
        try:
            url = make_url(credentials.url)
            if database:
                url = url.set(database=database)

            engine = create_async_engine(url)
            async with engine.connect() as conn:
                result = await conn.execute(query)
                rows = result.all()
        except Exception as error:
            # any driver or connection failure is reported as a provider failure
            raise SchemaProviderError(str(error) or repr(error)) from error
        finally:
            if engine is not None:
                await engine.dispose()

        logger.info(
            f"Fetched {len(rows)} columns for {len(table_refs)} tables from {url.host}/{url.database}"
        )
        return to_live_columns(rows)


def get_schema_provider() -> SchemaProvider:
    return WarehouseSchemaProvider()
