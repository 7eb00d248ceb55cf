# src/subscription/models.py
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Index, text
from sqlalchemy.orm import relationship
from database import Base
from datetime import datetime

class Subscription(Base):
    """Represents a user's entitlement to a plan."""
    __tablename__ = "subscriptions"

    id: int = Column(Integer, primary_key=True, index=True)
    user_id: int = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    plan_id: int = Column(Integer, ForeignKey("plans.id"), nullable=False, index=True)
    status: str = Column(String, nullable=False, default="pending", index=True)  # pending, active, expired, cancelled
    start_date: datetime = Column(DateTime, nullable=False)
    end_date: datetime = Column(DateTime, nullable=False, index=True)
    payment_id: int = Column(Integer, nullable=True)  # originating payment
    cancelled_at: datetime = Column(DateTime, nullable=True)
    cancellation_reason: str = Column(String(500), nullable=True)
    version: int = Column(Integer, nullable=False, default=0)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)
    updated_at: datetime = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="subscriptions")
    plan = relationship("Plan")
    billing_history = relationship("BillingRecord", back_populates="subscription", order_by="BillingRecord.id")

    __table_args__ = (
        # one active subscription per (user, plan); different plans may overlap
        Index(
            "uq_subscriptions_user_plan_active",
            "user_id",
            "plan_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

class BillingRecord(Base):
    """Append-only billing history entry of a subscription."""
    __tablename__ = "billing_history"

    id: int = Column(Integer, primary_key=True, index=True)
    subscription_id: int = Column(Integer, ForeignKey("subscriptions.id"), nullable=False, index=True)
    payment_id: int = Column(Integer, ForeignKey("payments.id"), nullable=False)
    date: datetime = Column(DateTime, nullable=False)
    amount: int = Column(Integer, nullable=False)
    outcome: str = Column(String, nullable=False, default="success")  # success, failed

    subscription = relationship("Subscription", back_populates="billing_history")
