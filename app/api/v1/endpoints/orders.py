from uuid import UUID

from fastapi import APIRouter, Depends, Request
from starlette import status

from app.core.deps import get_current_user, get_service
from app.core.exceptions import OrderNotFoundError
from app.core.limiter import ORDER_CREATE_LIMIT, limiter
from app.models.user import User
from app.schemas.order import OrderCreate, OrderDetailResponse, OrderListResponse
from app.services.order_service import OrderService

router = APIRouter(
    prefix="/orders",
    tags=["Orders"],
)


# PLACE ORDER FROM CART
@router.post("", response_model=OrderDetailResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(ORDER_CREATE_LIMIT)
async def create_order(
    request: Request,
    order_in: OrderCreate,
    current_user: User = Depends(get_current_user),
    service: OrderService = Depends(get_service(OrderService)),
):
    """
    Convert the caller's cart into a pending order.
    Totals come from current product prices, never from the client.
    """
    return await service.create_order(
        user_id=current_user.id,
        address_id=order_in.address_id,
    )


# LIST CUSTOMER ORDERS
@router.get("", response_model=list[OrderListResponse])
async def list_orders(
    current_user: User = Depends(get_current_user),
    service: OrderService = Depends(get_service(OrderService)),
):
    return await service.list_customer_orders(current_user.id)


@router.get("/{order_id}", response_model=OrderDetailResponse)
async def get_order(
    order_id: UUID,
    current_user: User = Depends(get_current_user),
    service: OrderService = Depends(get_service(OrderService)),
):
    order = await service.get_customer_order(user_id=current_user.id, order_id=order_id)

    if not order:
        raise OrderNotFoundError()

    return order
