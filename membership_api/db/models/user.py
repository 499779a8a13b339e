from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.sql import func
from membership_api.db.base import Base


class User(Base):
    """Account owned by the auth service. Matched to Stripe customers by email."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String, nullable=True)
    email = Column(String, unique=True, index=True, nullable=False)
    is_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
