# src/payment/models.py
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, JSON
from sqlalchemy.orm import relationship
from database import Base
from datetime import datetime

PAYMENT_ACTIONS = ("purchase", "renew", "upgrade")

class Payment(Base):
    """Represents one attempt to pay for a plan."""
    __tablename__ = "payments"

    id: int = Column(Integer, primary_key=True, index=True)
    user_id: int = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    plan_id: int = Column(Integer, ForeignKey("plans.id"), nullable=False)
    subscription_id: int = Column(Integer, ForeignKey("subscriptions.id"), nullable=True)  # set once, when applied
    target_subscription_id: int = Column(Integer, ForeignKey("subscriptions.id"), nullable=True, index=True)  # renew/upgrade
    action: str = Column(String, nullable=False, default="purchase", index=True)  # purchase, renew, upgrade
    amount: int = Column(Integer, nullable=False)  # paise
    currency: str = Column(String, nullable=False, default="INR")
    receipt: str = Column(String, unique=True, nullable=False)

    gateway_order_id: str = Column(String, unique=True, nullable=True, index=True)
    gateway_payment_id: str = Column(String, nullable=True, index=True)
    gateway_signature: str = Column(String, nullable=True)

    status: str = Column(String, nullable=False, default="pending", index=True)  # pending, completed, failed, cancelled
    invoice_number: str = Column(String, unique=True, nullable=True)
    invoice_generated_at: datetime = Column(DateTime, nullable=True)
    gateway_response: dict = Column(JSON, nullable=True)
    webhook_received: bool = Column(Boolean, nullable=False, default=False)
    webhook_data: dict = Column(JSON, nullable=True)
    completed_at: datetime = Column(DateTime, nullable=True)
    failure_reason: str = Column(String(500), nullable=True)
    reconcile_attempts: int = Column(Integer, nullable=False, default=0)

    created_at: datetime = Column(DateTime, default=datetime.utcnow)
    updated_at: datetime = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="payments")
    plan = relationship("Plan")
