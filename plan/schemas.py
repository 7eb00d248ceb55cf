# src/plan/schemas.py
from pydantic import BaseModel
from typing import List

class PlanResponse(BaseModel):
    """Schema for plan response."""
    id: int
    name: str
    price: int
    amount: int
    duration: int
    priority: int
    renew_limit: int
    allow_downgrade: bool
    billing_cycle: str
    features: List[str]
    is_active: bool

    class Config:
        from_attributes = True
