import asyncio
from typing import List, Optional
import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from app.core import models
from app.core.config import settings
from app.core.deploy import aggregate
from app.core.deploy.catalog_writer import CatalogWriter
from app.core.deploy.errors import DeployForbidden, OrganizationNotFound
from app.core.deploy.grouping import RequestGroup, group_requests
from app.core.deploy.reconcile import IndexedResult, Reconciler
from app.core.deploy.schema_provider import SchemaProvider
from app.core.deploy.store import CatalogStore
from app.core.schemas import (
    DataSourceError,
    DeployDatasetRequest,
    DeployDatasetsResponse,
    DeployMode,
)
from app.core.security import is_workspace_admin_or_data_admin


# -----------------------------------------------------------------------------
# DEPLOY PIPELINE - Orchestration
# Purpose: authorize once, fan out one task per (data source, database) group,
# fan the results back in and summarize them.
# Why: groups are independent, so a slow or broken warehouse only delays or
# fails its own datasets.
# -----------------------------------------------------------------------------


# Configure logging for the deploy pipeline
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


async def get_user_organization_id(user: models.User, db: AsyncSession) -> uuid.UUID:
    organization = None
    if user.organization_id is not None:
        organization = await db.get(models.Organization, user.organization_id)

    if organization is None:
        raise OrganizationNotFound(user.id)
    return organization.id


async def authorize_catalog_admin(
    user: models.User, db: AsyncSession, organization_id: Optional[uuid.UUID] = None
) -> uuid.UUID:
    """
    Resolve the organization the call acts on and check the caller may change it.

    Args:
        user: Authenticated caller.
        db: Request session.
        organization_id: Target organization, defaults to the caller's own.

    Returns:
        The organization id.

    Raises:
        OrganizationNotFound: the caller has no organization.
        DeployForbidden: the caller is not a workspace or data admin there.
    """
    if organization_id is None:
        organization_id = await get_user_organization_id(user, db)

    if not is_workspace_admin_or_data_admin(user, organization_id):
        raise DeployForbidden()
    return organization_id


class DeployPipeline:
    """One deploy (or validate) call over a batch of dataset declarations."""

    def __init__(
        self,
        store: CatalogStore,
        provider: SchemaProvider,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
        mode: DeployMode = DeployMode.DEPLOY,
        max_concurrent_groups: Optional[int] = None,
    ):
        self.store = store
        self.organization_id = organization_id
        self.user_id = user_id
        self.mode = mode
        self.reconciler = Reconciler(provider, organization_id, mode)
        self.semaphore = asyncio.Semaphore(
            max_concurrent_groups or settings.DEPLOY_MAX_CONCURRENT_GROUPS
        )

    async def run_group(self, group: RequestGroup) -> List[IndexedResult]:
        async with self.semaphore:
            async with self.store.session() as session:
                outcome = await self.reconciler.reconcile_group(session, group)

                if self.mode != DeployMode.DEPLOY or not outcome.valid:
                    return outcome.results

                writer = CatalogWriter(
                    session, outcome.data_source, self.organization_id, self.user_id
                )
                try:
                    dataset_ids = await writer.apply([item.request for item, _ in outcome.valid])
                    await session.commit()
                except Exception as error:
                    await session.rollback()
                    logger.error(
                        f"Catalog write failed for data source '{group.data_source_name}', "
                        f"{len(outcome.valid)} datasets not written: {error}"
                    )
                    for _, result in outcome.valid:
                        result.add_error(
                            DataSourceError(message=f"Failed to write catalog: {error}")
                        )
                    return outcome.results

                for item, result in outcome.valid:
                    result.dataset_id = dataset_ids.get(item.request.name)

                return outcome.results

    async def run(self, requests: List[DeployDatasetRequest]) -> DeployDatasetsResponse:
        groups = group_requests(requests)
        logger.info(
            f"{self.mode.value}: {len(requests)} datasets in {len(groups)} data source groups"
        )

        group_results = await asyncio.gather(*(self.run_group(g) for g in groups))
        results = aggregate.merge_results(group_results)
        response = aggregate.build_response(results)

        logger.info(
            f"{self.mode.value} finished: {response.summary.successful_models} succeeded, "
            f"{response.summary.failed_models} failed"
        )
        return response


async def deploy_datasets(
    requests: List[DeployDatasetRequest],
    user: models.User,
    db: AsyncSession,
    store: CatalogStore,
    provider: SchemaProvider,
    mode: DeployMode = DeployMode.DEPLOY,
) -> DeployDatasetsResponse:
    """
    Authorize the caller, then validate and (in DEPLOY mode) write the batch.

    Per-dataset failures are reported in the response, only authorization and
    organization lookup abort the call.
    """
    organization_id = await authorize_catalog_admin(user, db)
    pipeline = DeployPipeline(store, provider, organization_id, user.id, mode)
    return await pipeline.run(requests)
