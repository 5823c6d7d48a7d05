import logging
import uuid
from typing import Annotated, List
from fastapi import APIRouter, HTTPException, Response, status, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.core import schemas, models
from app.core.database import get_db
from app.core.security import get_current_user
from app.core.deploy import pipeline
from app.core.deploy.errors import DeployForbidden, PermissionReconciliationError
from app.core.deploy.permissions import reconcile_dataset_permissions
from app.core.deploy.store import CatalogStore, get_catalog_store

router = APIRouter(prefix="/users", tags=["Users"])

db_dep = Annotated[AsyncSession, Depends(get_db)]


# Assign / unassign datasets for a user
@router.put("/{user_id}/datasets", status_code=status.HTTP_204_NO_CONTENT)
async def put_user_datasets(
    user_id: uuid.UUID,
    assignments: List[schemas.DatasetAssignment],
    db: db_dep,
    store: Annotated[CatalogStore, Depends(get_catalog_store)],
    current_user: Annotated[models.User, Depends(get_current_user)],
):
    query = select(models.User).where(models.User.id == user_id)
    result = await db.execute(query)
    target_user = result.scalars().first()

    if not target_user or target_user.organization_id is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "User not found")

    try:
        organization_id = await pipeline.authorize_catalog_admin(
            current_user, db, target_user.organization_id
        )
    except DeployForbidden:
        raise HTTPException(
            status.HTTP_403_FORBIDDEN, "User is not authorized to assign datasets"
        )

    try:
        await reconcile_dataset_permissions(
            store, target_user.id, organization_id, assignments
        )
    except PermissionReconciliationError as error:
        logging.error(f"Error assigning datasets: {error}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error assigning datasets",
        )

    return Response(status_code=status.HTTP_204_NO_CONTENT)
