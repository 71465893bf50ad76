from fastapi import APIRouter

from coding_plans.api.commit_message import router as commit_message_router
from coding_plans.api.config import router as config_router
from coding_plans.api.health import router as health_router
from coding_plans.api.metrics import router as metrics_router
from coding_plans.api.providers import router as providers_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(metrics_router)
api_router.include_router(providers_router, prefix="/v1")
api_router.include_router(config_router, prefix="/v1")
api_router.include_router(commit_message_router, prefix="/v1")

__all__ = ["api_router"]
