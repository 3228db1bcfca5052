from fastapi import APIRouter

from .endpoints import (
    checkout,
    influencers,
    observability,
    promo_codes,
    webhooks,
    withdrawals,
)

router = APIRouter()
router.include_router(promo_codes.router)
router.include_router(checkout.router)
router.include_router(influencers.router)
router.include_router(withdrawals.router)
router.include_router(webhooks.router)
router.include_router(observability.router)
