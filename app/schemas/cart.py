from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field


class CartItemCreate(BaseModel):
    product_id: UUID
    quantity: int = Field(..., gt=0)  # Must be at least 1


class CartItemUpdate(BaseModel):
    quantity: int = Field(..., ge=0)  # 0 removes the line


class CartProduct(BaseModel):
    name: str
    slug: str
    price: Decimal
    images: list[str]
    stock: int
    is_active: bool


class CartLine(BaseModel):
    product_id: UUID
    quantity: int
    product: CartProduct


class CartSummary(BaseModel):
    items: list[CartLine]
    total: Decimal
    item_count: int
