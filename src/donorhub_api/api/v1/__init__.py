from fastapi import APIRouter

from .endpoints import (
    admin,
    donations,
    health,
    rewards,
    vouchers,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(rewards.router)
router.include_router(vouchers.router)
router.include_router(donations.router)
router.include_router(admin.router)
