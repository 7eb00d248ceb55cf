# src/auth/models.py
from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.orm import relationship
from database import Base
from datetime import datetime

class User(Base):
    """Represents a paying customer or an admin."""
    __tablename__ = "users"

    id: int = Column(Integer, primary_key=True, index=True)
    email: str = Column(String, unique=True, index=True, nullable=False)
    name: str = Column(String, nullable=False, default="")
    role: str = Column(String, nullable=False, default="user")  # user, admin
    is_active: bool = Column(Boolean, nullable=False, default=True)
    created_at: datetime = Column(DateTime, default=datetime.utcnow)

    payments = relationship("Payment", back_populates="user")
    subscriptions = relationship("Subscription", back_populates="user")
