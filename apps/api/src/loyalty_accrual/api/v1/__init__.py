from fastapi import APIRouter

from .endpoints import health, observability

router = APIRouter(prefix="/api/v1")

router.include_router(health.router, tags=["Health"])
router.include_router(observability.router)
