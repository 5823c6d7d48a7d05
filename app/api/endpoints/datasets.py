import logging
from typing import Annotated, List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import models, schemas
from app.core.database import get_db
from app.core.security import get_current_user
from app.core.deploy import pipeline
from app.core.deploy.errors import DeployForbidden, OrganizationNotFound
from app.core.deploy.schema_provider import SchemaProvider, get_schema_provider
from app.core.deploy.store import CatalogStore, get_catalog_store

router = APIRouter(prefix="/datasets", tags=["Datasets"])

db_dep = Annotated[AsyncSession, Depends(get_db)]
user_dep = Annotated[models.User, Depends(get_current_user)]
store_dep = Annotated[CatalogStore, Depends(get_catalog_store)]
provider_dep = Annotated[SchemaProvider, Depends(get_schema_provider)]


async def run_deploy(
    requests: List[schemas.DeployDatasetRequest],
    current_user: models.User,
    db: AsyncSession,
    store: CatalogStore,
    provider: SchemaProvider,
    mode: schemas.DeployMode,
) -> schemas.DeployDatasetsResponse:
    try:
        return await pipeline.deploy_datasets(
            requests, current_user, db, store, provider, mode
        )
    except DeployForbidden as error:
        raise HTTPException(status.HTTP_403_FORBIDDEN, str(error))
    except OrganizationNotFound as error:
        logging.error(f"Error getting user organization id: {error}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error getting user organization id",
        )
    except Exception as error:
        logging.error(f"Error in {mode.value} datasets: {error!r}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to {mode.value} datasets",
        )


@router.post(
    "/deploy",
    response_model=schemas.DeployDatasetsResponse,
    status_code=status.HTTP_200_OK,
)
async def deploy_datasets(
    requests: List[schemas.DeployDatasetRequest],
    current_user: user_dep,
    db: db_dep,
    store: store_dep,
    provider: provider_dep,
):
    """
    Validate every dataset against its warehouse and write the valid ones
    to the catalog. Individual failures come back inside the 200 response.
    """
    return await run_deploy(
        requests, current_user, db, store, provider, schemas.DeployMode.DEPLOY
    )


@router.post(
    "/validate",
    response_model=schemas.DeployDatasetsResponse,
    status_code=status.HTTP_200_OK,
)
async def validate_datasets(
    requests: List[schemas.DeployDatasetRequest],
    current_user: user_dep,
    db: db_dep,
    store: store_dep,
    provider: provider_dep,
):
    """Check tables and every declared column exist remotely, write nothing."""
    return await run_deploy(
        requests, current_user, db, store, provider, schemas.DeployMode.VALIDATE
    )
