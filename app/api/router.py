from fastapi import APIRouter
from app.api.endpoints import datasets, users

api_router = APIRouter()

# Combine all sub-routers into one
api_router.include_router(datasets.router)
api_router.include_router(users.router)
