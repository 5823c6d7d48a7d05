from typing import Dict, List, Set
from datetime import datetime, timezone
from dataclasses import dataclass, field
import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import models
from app.core.schemas import ColumnDefinition, DeployDatasetRequest


# -----------------------------------------------------------------------------
# CATALOG WRITER
# Purpose: make the persisted catalog match the validated declarations.
# Why: the upserts are keyed on natural keys, so running the same deploy twice
# leaves the catalog untouched and a dropped dataset or column comes back with
# its old id when it is declared again.
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)

DEFAULT_COLUMN_TYPE = "text"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def dialect_insert(session: AsyncSession, model):
    """
    INSERT construct with ON CONFLICT support for the bound database.
    Production runs on PostgreSQL, tests on SQLite, both speak the same upsert.
    """
    if session.get_bind().dialect.name == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)


@dataclass
class ColumnSync:
    dataset_id: uuid.UUID
    upserted: int = 0
    soft_deleted: List[str] = field(default_factory=list)


class CatalogWriter:
    """
    Writes one data source group into the catalog through the group's session.

    The caller owns the transaction: commit after apply(), roll back if it raises.
    """

    def __init__(
        self,
        session: AsyncSession,
        data_source: models.DataSource,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
    ):
        self.session = session
        self.data_source = data_source
        self.organization_id = organization_id
        self.user_id = user_id

    async def load_existing_dataset_names(self) -> Set[str]:
        query = select(models.Dataset.database_name).where(
            models.Dataset.data_source_id == self.data_source.id,
            models.Dataset.deleted_at.is_(None),
        )
        result = await self.session.execute(query)
        return set(result.scalars().all())

    def build_dataset_row(self, req: DeployDatasetRequest, now: datetime) -> dict:
        relationships = None
        if req.entity_relationships is not None:
            relationships = [rel.model_dump() for rel in req.entity_relationships]

        return {
            # only used when the natural key is new, an existing row keeps its id
            "id": req.id or uuid.uuid4(),
            "name": req.name,
            "database_name": req.name,
            "schema": req.schema_name,
            "data_source_id": self.data_source.id,
            "organization_id": self.organization_id,
            "type": "view",
            "definition": req.sql_definition or "",
            "when_to_use": req.description,
            "when_not_to_use": None,
            "enabled": True,
            "imported": False,
            "model": req.model,
            "yml_file": req.yml_file,
            "database_identifier": req.database_identifier or req.database,
            "entity_relationships": relationships,
            "created_by": self.user_id,
            "updated_by": self.user_id,
            "created_at": now,
            "updated_at": now,
            "deleted_at": None,
        }

    async def upsert_datasets(
        self, requests: List[DeployDatasetRequest], now: datetime
    ) -> Dict[str, uuid.UUID]:
        """
        Insert or update one dataset row per database_name and revive soft-deleted ones.

        Returns:
            {database_name: id} as stored, which is the authoritative identity.
        """
        # one row per natural key, the last declaration wins
        latest = {req.name: req for req in requests}
        rows = [self.build_dataset_row(req, now) for req in latest.values()]

        stmt = dialect_insert(self.session, models.Dataset).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["database_name", "data_source_id"],
            set_={
                "updated_at": stmt.excluded["updated_at"],
                "updated_by": stmt.excluded["updated_by"],
                "definition": stmt.excluded["definition"],
                "when_to_use": stmt.excluded["when_to_use"],
                "model": stmt.excluded["model"],
                "yml_file": stmt.excluded["yml_file"],
                "schema": stmt.excluded["schema"],
                "name": stmt.excluded["name"],
                "database_identifier": stmt.excluded["database_identifier"],
                "entity_relationships": stmt.excluded["entity_relationships"],
                "enabled": stmt.excluded["enabled"],
                "deleted_at": None,
            },
        ).returning(models.Dataset.database_name, models.Dataset.id)

        result = await self.session.execute(stmt)
        return {database_name: dataset_id for database_name, dataset_id in result.all()}

    async def load_live_column_names(self, dataset_id: uuid.UUID) -> Set[str]:
        query = select(models.DatasetColumn.name).where(
            models.DatasetColumn.dataset_id == dataset_id,
            models.DatasetColumn.deleted_at.is_(None),
        )
        result = await self.session.execute(query)
        return set(result.scalars().all())

    async def sync_columns(
        self,
        dataset_id: uuid.UUID,
        columns: List[ColumnDefinition],
        now: datetime,
    ) -> ColumnSync:
        """
        Converge the dataset's live columns on the declared ones.

        Removed names are soft-deleted first, then every declared column is
        upserted with deleted_at cleared, so no name ends up both deleted and live.
        """
        sync = ColumnSync(dataset_id=dataset_id)
        declared = {col.name: col for col in columns}

        current = await self.load_live_column_names(dataset_id)
        removed = sorted(current - set(declared))

        if removed:
            stmt = (
                update(models.DatasetColumn)
                .where(
                    models.DatasetColumn.dataset_id == dataset_id,
                    models.DatasetColumn.name.in_(removed),
                    models.DatasetColumn.deleted_at.is_(None),
                )
                .values(deleted_at=now)
                .execution_options(synchronize_session=False)
            )
            await self.session.execute(stmt)
            sync.soft_deleted = removed

        if not declared:
            return sync

        rows = [
            {
                "id": uuid.uuid4(),
                "dataset_id": dataset_id,
                "name": col.name,
                "type": col.type or DEFAULT_COLUMN_TYPE,
                "dim_type": col.type,
                "description": col.description,
                "semantic_type": col.semantic_type,
                "expr": col.expr,
                "nullable": True,
                "stored_values": col.stored_values,
                "created_at": now,
                "updated_at": now,
                "deleted_at": None,
            }
            for col in declared.values()
        ]

        stmt = dialect_insert(self.session, models.DatasetColumn).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["dataset_id", "name"],
            set_={
                "type": stmt.excluded["type"],
                "dim_type": stmt.excluded["dim_type"],
                "description": stmt.excluded["description"],
                "semantic_type": stmt.excluded["semantic_type"],
                "expr": stmt.excluded["expr"],
                "stored_values": stmt.excluded["stored_values"],
                "updated_at": now,
                "deleted_at": None,
            },
        )
        await self.session.execute(stmt)
        sync.upserted = len(rows)
        return sync

    async def apply(self, requests: List[DeployDatasetRequest]) -> Dict[str, uuid.UUID]:
        """
        Write every validated request of the group.

        Args:
            requests: Requests that matched a live table.

        Returns:
            {database_name: dataset id} for everything written.

        Example:
            ids = await CatalogWriter(session, ds, org_id, user_id).apply(valid)
            await session.commit()
        """
        if not requests:
            return {}

        now = _utcnow()
        existing = await self.load_existing_dataset_names()
        dataset_ids = await self.upsert_datasets(requests, now)

        created = [name for name in dataset_ids if name not in existing]
        logger.info(
            f"Upserted {len(dataset_ids)} datasets for data source '{self.data_source.name}' "
            f"({len(created)} new or revived)"
        )

        latest = {req.name: req for req in requests}
        for name, req in latest.items():
            sync = await self.sync_columns(dataset_ids[name], req.columns, now)
            logger.debug(
                f"Dataset '{req.schema_name}.{name}': {sync.upserted} columns upserted"
            )
            if sync.soft_deleted:
                logger.info(
                    f"Soft-deleted columns {sync.soft_deleted} of dataset '{req.schema_name}.{name}'"
                )

        return dataset_ids
