import uuid
from datetime import datetime, timedelta, timezone
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from typing import Annotated, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
import jwt

from app.core.database import get_db
from app.core import models
from app.core.config import settings
from app.core.schemas import UserRole

db_dep = Annotated[AsyncSession, Depends(get_db)]

# Roles allowed to change the catalog and its permissions
CATALOG_ADMIN_ROLES = {UserRole.WORKSPACE_ADMIN.value, UserRole.DATA_ADMIN.value}


def create_access_token(data: dict):
    to_encode = data.copy()

    expire_time = datetime.now(timezone.utc) + timedelta(
        minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
    )
    to_encode.update({"exp": expire_time})

    encoded_jwt = jwt.encode(
        to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM
    )

    return encoded_jwt


# Tokens are issued by the identity provider, this service only verifies them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


# Decode the token and see who is the user
async def get_current_user(token: Annotated[str, Depends(oauth2_scheme)], db: db_dep):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM]
        )
        user_id = uuid.UUID(str(payload.get("user_id")))

    # Expired, tampered or malformed token
    except (jwt.InvalidTokenError, ValueError):
        raise credentials_exception

    query = select(models.User).where(models.User.id == user_id)
    result = await db.execute(query)
    user = result.scalars().first()

    if user is None:
        raise credentials_exception

    return user


def is_workspace_admin_or_data_admin(
    user: models.User, organization_id: Optional[uuid.UUID]
) -> bool:
    """The caller may deploy only inside its own organization and with an admin role."""
    if organization_id is None or user.organization_id != organization_id:
        return False
    return user.role in CATALOG_ADMIN_ROLES
