import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from starlette import status

from app.core.deps import get_current_user, get_service
from app.models.user import User
from app.schemas.cart import CartItemCreate, CartItemUpdate, CartSummary
from app.services.cart_service import CartService


logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/cart",
    tags=["Cart"],
)


# -------------------------------
# VIEW CART
# -------------------------------
@router.get("", response_model=CartSummary)
async def view_cart(
    current_user: User = Depends(get_current_user),
    service: CartService = Depends(get_service(CartService)),
):
    """
    Current cart lines joined with live product data.
    """
    return await service.get_cart(current_user.id)


# -------------------------------
# ADD ITEM TO CART
# -------------------------------
@router.post("/items", response_model=CartSummary)
async def add_to_cart(
    item_in: CartItemCreate,
    current_user: User = Depends(get_current_user),
    service: CartService = Depends(get_service(CartService)),
):
    return await service.add_item(
        user_id=current_user.id,
        product_id=item_in.product_id,
        quantity=item_in.quantity,
    )


# -------------------------------
# UPDATE CART ITEM
# -------------------------------
@router.patch("/items/{product_id}", response_model=CartSummary)
async def update_cart_item(
    product_id: UUID,
    item_in: CartItemUpdate,
    current_user: User = Depends(get_current_user),
    service: CartService = Depends(get_service(CartService)),
):
    """
    Set a line's quantity. Quantity 0 removes the line.
    """
    return await service.update_item(
        user_id=current_user.id,
        product_id=product_id,
        quantity=item_in.quantity,
    )


# -------------------------------
# REMOVE SINGLE ITEM
# -------------------------------
@router.delete("/items/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_cart_item(
    product_id: UUID,
    current_user: User = Depends(get_current_user),
    service: CartService = Depends(get_service(CartService)),
):
    await service.remove_item(user_id=current_user.id, product_id=product_id)

    # 204 → NO RESPONSE BODY
    return None
