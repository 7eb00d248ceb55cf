# src/plan/models.py
from sqlalchemy import Column, Integer, String, DateTime, Boolean, JSON
from database import Base
from datetime import datetime

ALLOWED_PLAN_NAMES = ("Basic", "Standard", "Premium")
BILLING_CYCLES = ("monthly", "quarterly", "yearly")

class Plan(Base):
    """Represents a catalogue entry a user can pay for."""
    __tablename__ = "plans"

    id: int = Column(Integer, primary_key=True, index=True)
    name: str = Column(String, unique=True, nullable=False)  # Basic, Standard, Premium
    price: int = Column(Integer, nullable=False)  # display price, rupees
    amount: int = Column(Integer, nullable=False)  # charged amount, paise
    duration: int = Column(Integer, nullable=False, default=30)  # days
    priority: int = Column(Integer, unique=True, nullable=False, index=True)
    renew_limit: int = Column(Integer, nullable=False, default=2)  # per calendar month, 0 = unlimited
    allow_downgrade: bool = Column(Boolean, nullable=False, default=False)
    billing_cycle: str = Column(String, nullable=False, default="monthly")
    features: list = Column(JSON, nullable=False, default=list)
    is_active: bool = Column(Boolean, nullable=False, default=True, index=True)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)
