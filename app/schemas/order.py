from uuid import UUID
from decimal import Decimal
from datetime import datetime
from pydantic import BaseModel, ConfigDict

from app.db.enums import OrderStatus, PaymentStatus


class OrderCreate(BaseModel):
    address_id: UUID


class ShippingAddress(BaseModel):
    name: str
    line1: str
    line2: str | None
    city: str
    state: str
    pincode: str
    phone: str


class OrderItemRead(BaseModel):
    id: UUID
    product_id: UUID
    quantity: int
    unit_price: Decimal
    product_name: str
    product_slug: str

    model_config = ConfigDict(from_attributes=True)


class OrderListResponse(BaseModel):
    id: UUID
    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    total: Decimal
    razorpay_order_id: str | None
    payment_id: str | None
    shipping_address: ShippingAddress
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderDetailResponse(OrderListResponse):
    items: list[OrderItemRead]
