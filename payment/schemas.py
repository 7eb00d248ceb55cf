# src/payment/schemas.py
from pydantic import BaseModel
from datetime import datetime
from typing import Optional
from subscription.schemas import SubscriptionResponse

class PaymentResponse(BaseModel):
    """Schema for payment response."""
    id: int
    user_id: int
    plan_id: int
    subscription_id: Optional[int]
    target_subscription_id: Optional[int]
    action: str
    amount: int
    currency: str
    receipt: str
    gateway_order_id: Optional[str]
    gateway_payment_id: Optional[str]
    status: str
    invoice_number: Optional[str]
    completed_at: Optional[datetime]
    failure_reason: Optional[str]
    webhook_received: bool
    created_at: datetime

    class Config:
        from_attributes = True

class CreateOrderRequest(BaseModel):
    plan_id: int
    action: str = "purchase"
    subscription_id: Optional[int] = None

class CreateOrderResponse(BaseModel):
    """Schema for order creation response."""
    order_id: str
    amount: int
    currency: str
    key: str
    payment_id: int

class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str
    payment_id: Optional[int] = None

class VerifyPaymentResponse(BaseModel):
    message: str
    replayed: bool
    subscription: SubscriptionResponse
