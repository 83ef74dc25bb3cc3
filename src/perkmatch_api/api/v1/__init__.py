from fastapi import APIRouter

from .endpoints import (
    admin,
    claims,
    health,
    matching,
    observability,
    transactions,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(transactions.router)
router.include_router(matching.router)
router.include_router(admin.router)
router.include_router(claims.router)
router.include_router(observability.router)
