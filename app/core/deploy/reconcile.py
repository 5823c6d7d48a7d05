# -----------------------------------------------------------------------------
# RECONCILE MODULE
# Purpose: match declared datasets against the live warehouse schema, one data
# source group at a time, and decide which ones may be written to the catalog.
# Group problems (missing data source, bad credentials, failed fetch) fail every
# request in the group the same way, table problems fail only that request.
# -----------------------------------------------------------------------------

import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import models
from app.core.deploy.grouping import IndexedRequest, RequestGroup
from app.core.deploy.schema_provider import LiveColumn, SchemaProvider
from app.core.schemas import (
    ColumnNotFoundError,
    DataSourceError,
    DeployDatasetRequest,
    DeployMode,
    TableNotFoundError,
    ValidationResult,
)

logger = logging.getLogger(__name__)

IndexedResult = Tuple[int, ValidationResult]


@dataclass
class GroupOutcome:
    """What the reconciler decided for one group."""

    results: List[IndexedResult] = field(default_factory=list)
    data_source: Optional[models.DataSource] = None
    # requests that matched a live table, with the result object to update after the write
    valid: List[Tuple[IndexedRequest, ValidationResult]] = field(default_factory=list)


def new_result(req: DeployDatasetRequest) -> ValidationResult:
    return ValidationResult(
        name=req.name,
        data_source_name=req.data_source_name,
        schema_name=req.schema_name,
    )


def fail_group(group: RequestGroup, message: str) -> GroupOutcome:
    """Every request in the group gets the same DataSourceError."""
    outcome = GroupOutcome()
    for item in group.items:
        result = new_result(item.request)
        result.add_error(DataSourceError(message=message))
        outcome.results.append((item.index, result))
    return outcome


def index_live_columns(
    live_columns: List[LiveColumn],
) -> Dict[Tuple[str, str], List[LiveColumn]]:
    """Bucket live columns by (lower(schema), lower(table))."""
    by_table: Dict[Tuple[str, str], List[LiveColumn]] = {}
    for col in live_columns:
        key = (col.schema_name.lower(), col.table_name.lower())
        by_table.setdefault(key, []).append(col)
    return by_table


def match_live_columns(
    req: DeployDatasetRequest, by_table: Dict[Tuple[str, str], List[LiveColumn]]
) -> List[LiveColumn]:
    return by_table.get((req.schema_name.lower(), req.name.lower()), [])


def validate_request(
    req: DeployDatasetRequest, matched: List[LiveColumn], mode: DeployMode
) -> ValidationResult:
    """
    Judge one request against the live columns of its table.

    Args:
        req: Declared dataset.
        matched: Live columns of the table the request names (may be empty).
        mode: In VALIDATE mode every declared column must also exist remotely.

    Returns:
        ValidationResult with success set and all errors accumulated.
    """
    result = new_result(req)

    if not matched:
        result.add_error(TableNotFoundError(qualified_name=f"{req.schema_name}.{req.name}"))
        return result

    result.success = True

    if mode == DeployMode.VALIDATE:
        live_names = {col.column_name.lower() for col in matched}
        for declared in req.columns:
            if declared.name.lower() not in live_names:
                result.add_error(ColumnNotFoundError(column_name=declared.name))

    return result


class Reconciler:
    def __init__(
        self,
        provider: SchemaProvider,
        organization_id: uuid.UUID,
        mode: DeployMode = DeployMode.DEPLOY,
    ):
        self.provider = provider
        self.organization_id = organization_id
        self.mode = mode

    async def resolve_data_source(
        self, session: AsyncSession, group: RequestGroup
    ) -> Optional[models.DataSource]:
        query = select(models.DataSource).where(
            models.DataSource.name == group.data_source_name,
            models.DataSource.env == group.env,
            models.DataSource.organization_id == self.organization_id,
            models.DataSource.deleted_at.is_(None),
        )
        result = await session.execute(query)
        return result.scalars().first()

    async def reconcile_group(
        self, session: AsyncSession, group: RequestGroup
    ) -> GroupOutcome:
        # Any failure before per-table matching fails this group only, the
        # other groups of the call are still deployed and reported.
        try:
            data_source = await self.resolve_data_source(session, group)
        except Exception as error:
            logger.error(f"Lookup of data source '{group.data_source_name}' failed: {error!r}")
            return fail_group(group, f"Failed to get data source: {error}")

        if data_source is None:
            logger.error(
                f"Data source '{group.data_source_name}' ({group.env}) not found, "
                f"failing {len(group.items)} datasets"
            )
            return fail_group(group, f"Data source '{group.data_source_name}' not found")

        try:
            credentials = await self.provider.fetch_credentials(
                data_source.secret_id, data_source.type
            )
        except Exception as error:
            logger.error(f"Credentials for '{data_source.name}' unavailable: {error!r}")
            return fail_group(group, f"Failed to get data source credentials: {error}")

        table_refs = group.table_refs
        logger.info(
            f"Validating tables for data source '{group.data_source_name}.{group.database}': {table_refs}"
        )

        try:
            live_columns = await self.provider.fetch_columns_batch(
                table_refs, credentials, group.database
            )
        except Exception as error:
            logger.error(f"Error retrieving columns for data source '{data_source.name}': {error!r}")
            return fail_group(group, f"Failed to get columns from data source: {error}")

        by_table = index_live_columns(live_columns)
        outcome = GroupOutcome(data_source=data_source)

        for item in group.items:
            req = item.request
            matched = match_live_columns(req, by_table)
            result = validate_request(req, matched, self.mode)

            if not matched:
                logger.warning(
                    f"No columns found for dataset '{req.name}' in schema '{req.schema_name}'. "
                    f"Available tables: {sorted(f'{s}.{t}' for s, t in by_table)}"
                )
            elif result.success:
                logger.info(f"Found {len(matched)} columns for dataset '{req.schema_name}.{req.name}'")
                outcome.valid.append((item, result))

            outcome.results.append((item.index, result))

        return outcome
