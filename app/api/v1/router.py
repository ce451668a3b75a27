from fastapi import APIRouter

from app.api.v1.endpoints import cart, orders, payments

router = APIRouter()

router.include_router(cart.router)
router.include_router(orders.router)
router.include_router(payments.router)
