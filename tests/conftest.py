import uuid
from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from app.core.security import create_access_token
from app.main import app
from app.core import models
from app.core.database import Base, get_db
from app.core.deploy.errors import SchemaProviderError
from app.core.deploy.schema_provider import (
    Credentials,
    LiveColumn,
    SchemaProvider,
    get_schema_provider,
)
from app.core.deploy.store import CatalogStore, get_catalog_store


# Live warehouse used by most tests: (schema, table) -> [(column, type)]
WAREHOUSE_TABLES: Dict[Tuple[str, str], List[Tuple[str, str]]] = {
    ("public", "orders"): [("id", "integer"), ("amount", "numeric"), ("status", "text")],
    ("public", "customers"): [("id", "integer"), ("email", "text")],
    ("analytics", "events"): [("event_id", "uuid"), ("occurred_at", "timestamp")],
}


class FakeSchemaProvider(SchemaProvider):
    """In-memory warehouse that records every call it receives."""

    def __init__(
        self,
        tables: Optional[Dict[Tuple[str, str], List[Tuple[str, str]]]] = None,
        broken_secrets: Tuple[str, ...] = (),
        failing_secrets: Tuple[str, ...] = (),
        crashing_secrets: Tuple[str, ...] = (),
    ):
        self.tables = WAREHOUSE_TABLES if tables is None else tables
        self.broken_secrets = broken_secrets
        self.failing_secrets = failing_secrets
        self.crashing_secrets = crashing_secrets
        self.credential_calls: List[Tuple[str, str]] = []
        self.batch_calls: List[Tuple[List[Tuple[str, str]], Optional[str]]] = []

    async def fetch_credentials(self, secret_ref: str, source_type: str) -> Credentials:
        self.credential_calls.append((secret_ref, source_type))
        if secret_ref in self.broken_secrets:
            raise SchemaProviderError(f"secret {secret_ref} is not readable")
        return Credentials(source_type=source_type, url=f"fake://{secret_ref}")

    async def fetch_columns_batch(self, table_refs, credentials, database=None):
        self.batch_calls.append((list(table_refs), database))
        if credentials.url.removeprefix("fake://") in self.failing_secrets:
            raise SchemaProviderError("connection refused")
        if credentials.url.removeprefix("fake://") in self.crashing_secrets:
            raise RuntimeError("driver blew up")

        wanted = {(schema.lower(), name.lower()) for name, schema in table_refs}
        return [
            LiveColumn(
                schema_name=schema,
                table_name=table,
                column_name=column_name,
                native_type=native_type,
            )
            for (schema, table), cols in self.tables.items()
            if (schema.lower(), table.lower()) in wanted
            for column_name, native_type in cols
        ]


# Fresh SQLite catalog for every test, dropped with tmp_path
@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def store(session_factory) -> CatalogStore:
    return CatalogStore(session_factory)


@pytest.fixture
def provider() -> FakeSchemaProvider:
    return FakeSchemaProvider()


# Client
@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, store: CatalogStore, provider: FakeSchemaProvider):
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_catalog_store] = lambda: store
    app.dependency_overrides[get_schema_provider] = lambda: provider

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


# Organization
@pytest_asyncio.fixture(scope="function")
async def organization(db_session: AsyncSession):
    org = models.Organization(id=uuid.uuid4(), name=f"Org {uuid.uuid4().hex[:8]}")
    db_session.add(org)
    await db_session.commit()
    return org


async def _make_user(db_session: AsyncSession, role: str, organization_id):
    user = models.User(
        id=uuid.uuid4(),
        email=f"{role}_{uuid.uuid4().hex[:8]}@example.com",
        role=role,
        organization_id=organization_id,
    )
    db_session.add(user)
    await db_session.commit()
    return user


# Data admin
@pytest_asyncio.fixture(scope="function")
async def data_admin(db_session: AsyncSession, organization):
    return await _make_user(db_session, "data_admin", organization.id)


# Viewer
@pytest_asyncio.fixture(scope="function")
async def viewer(db_session: AsyncSession, organization):
    return await _make_user(db_session, "viewer", organization.id)


# User without an organization
@pytest_asyncio.fixture(scope="function")
async def orphan_admin(db_session: AsyncSession):
    return await _make_user(db_session, "workspace_admin", None)


async def make_data_source(
    db_session: AsyncSession, organization_id, name: str, secret_id: Optional[str] = None
):
    data_source = models.DataSource(
        id=uuid.uuid4(),
        name=name,
        type="postgres",
        env="dev",
        secret_id=secret_id or f"secret-{name}",
        organization_id=organization_id,
    )
    db_session.add(data_source)
    await db_session.commit()
    return data_source


# Data source whose warehouse holds WAREHOUSE_TABLES
@pytest_asyncio.fixture(scope="function")
async def data_source(db_session: AsyncSession, organization):
    return await make_data_source(db_session, organization.id, "ds_valid")


def auth_headers(user) -> dict:
    token = create_access_token({"user_id": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(data_admin):
    return auth_headers(data_admin)


@pytest.fixture
def viewer_headers(viewer):
    return auth_headers(viewer)
