from fastapi import APIRouter

from loanflow.api.v1.routers import admin, health, intake

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(intake.router)
api_router.include_router(admin.router)

__all__ = ["api_router"]
