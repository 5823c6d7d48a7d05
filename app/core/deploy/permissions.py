# -----------------------------------------------------------------------------
# DATASET PERMISSIONS
# Purpose: grant and revoke a user's access to datasets in one call.
# Assign and unassign touch disjoint rows, so they run as two concurrent tasks
# with their own sessions. Each commits on its own, there is no cross rollback.
# -----------------------------------------------------------------------------

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import List

from sqlalchemy import update

from app.core import models
from app.core.deploy.catalog_writer import dialect_insert
from app.core.deploy.errors import PermissionReconciliationError
from app.core.deploy.store import CatalogStore
from app.core.schemas import DatasetAssignment

logger = logging.getLogger(__name__)

USER_PERMISSION = "user"


async def assign_datasets(
    store: CatalogStore,
    grantee_id: uuid.UUID,
    organization_id: uuid.UUID,
    dataset_ids: List[uuid.UUID],
) -> int:
    """Upsert live permission rows, reviving soft-deleted ones."""
    if not dataset_ids:
        return 0

    now = datetime.now(timezone.utc)
    rows = [
        {
            "id": uuid.uuid4(),
            "dataset_id": dataset_id,
            "permission_id": grantee_id,
            "permission_type": USER_PERMISSION,
            "organization_id": organization_id,
            "created_at": now,
            "updated_at": now,
            "deleted_at": None,
        }
        for dataset_id in dict.fromkeys(dataset_ids)
    ]

    async with store.session() as session:
        stmt = dialect_insert(session, models.DatasetPermission).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["dataset_id", "permission_id", "permission_type"],
            set_={"deleted_at": None, "updated_at": now},
        )
        await session.execute(stmt)
        await session.commit()

    return len(rows)


async def unassign_datasets(
    store: CatalogStore,
    grantee_id: uuid.UUID,
    dataset_ids: List[uuid.UUID],
) -> int:
    """Soft-delete the grantee's live permission rows on the given datasets."""
    if not dataset_ids:
        return 0

    async with store.session() as session:
        stmt = (
            update(models.DatasetPermission)
            .where(
                models.DatasetPermission.dataset_id.in_(dataset_ids),
                models.DatasetPermission.permission_id == grantee_id,
                models.DatasetPermission.permission_type == USER_PERMISSION,
                models.DatasetPermission.deleted_at.is_(None),
            )
            .values(deleted_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        await session.commit()

    return result.rowcount


async def reconcile_dataset_permissions(
    store: CatalogStore,
    grantee_id: uuid.UUID,
    organization_id: uuid.UUID,
    assignments: List[DatasetAssignment],
) -> None:
    """
    Apply a list of {dataset_id, assigned} flags for one user.

    Both halves always run to the end. If either failed, every failure is
    raised together as PermissionReconciliationError.
    """
    to_assign = [a.dataset_id for a in assignments if a.assigned]
    to_unassign = [a.dataset_id for a in assignments if not a.assigned]

    outcomes = await asyncio.gather(
        assign_datasets(store, grantee_id, organization_id, to_assign),
        unassign_datasets(store, grantee_id, to_unassign),
        return_exceptions=True,
    )

    failures = [o for o in outcomes if isinstance(o, BaseException)]
    if failures:
        for failure in failures:
            logger.error(f"Dataset permission update for user {grantee_id} failed: {failure!r}")
        raise PermissionReconciliationError(failures)

    assigned, unassigned = outcomes
    logger.info(
        f"User {grantee_id}: {assigned} datasets assigned, {unassigned} unassigned"
    )
