from fastapi import APIRouter

from .endpoints import (
    admin,
    cart,
    checkout,
    health,
    loyalty,
    observability,
    receipts,
    subscription,
    vouchers,
    wallet,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(cart.router)
router.include_router(checkout.router)
router.include_router(wallet.router)
router.include_router(receipts.router)
router.include_router(vouchers.router)
router.include_router(loyalty.router)
router.include_router(subscription.router)
router.include_router(admin.router)
router.include_router(observability.router)
