from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.db.enums import OrderStatus, PaymentStatus


class PaymentIntentResponse(BaseModel):
    order_id: UUID
    razorpay_order_id: str
    amount: int  # minor units
    currency: str
    key_id: str


class PaymentVerifyRequest(BaseModel):
    order_id: UUID
    razorpay_order_id: str = Field(..., min_length=1, max_length=64)
    razorpay_payment_id: str = Field(..., min_length=1, max_length=64)
    razorpay_signature: str = Field(..., min_length=1, max_length=256)

    model_config = ConfigDict(str_strip_whitespace=True)


class PaymentVerifyResponse(BaseModel):
    order_id: UUID
    status: OrderStatus
    payment_status: PaymentStatus
