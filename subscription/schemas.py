# src/subscription/schemas.py
from pydantic import BaseModel
from datetime import datetime
from typing import List, Optional

class BillingRecordResponse(BaseModel):
    date: datetime
    amount: int
    payment_id: int
    outcome: str

    class Config:
        from_attributes = True

class SubscriptionResponse(BaseModel):
    """Schema for subscription response."""
    id: int
    user_id: int
    plan_id: int
    status: str
    start_date: datetime
    end_date: datetime
    payment_id: Optional[int]
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]
    billing_history: List[BillingRecordResponse] = []

    class Config:
        from_attributes = True

class ActivateRequest(BaseModel):
    """Schema for activating a subscription from a completed payment."""
    payment_id: int
    plan_id: int

class CancelRequest(BaseModel):
    reason: Optional[str] = None
