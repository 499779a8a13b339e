from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, JSON
from sqlalchemy.sql import func
from membership_api.db.base import Base


class PromoCode(Base):
    """
    Promotional code managed from the admin console.

    Read-only for the billing service: it is evaluated, never mutated.
    """
    __tablename__ = "promo_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, unique=True, index=True, nullable=False)
    discount_type = Column(String, nullable=False)  # percentage | fixed_amount
    discount_value = Column(Float, nullable=False)  # percent, or dollars for fixed_amount
    applicable_products = Column(JSON, nullable=False, default=list)  # Stripe product ids; empty = all
    is_active = Column(Boolean, default=True, nullable=False)
    max_uses = Column(Integer, nullable=True)
    times_used = Column(Integer, default=0, nullable=False)
    valid_from = Column(DateTime(timezone=True), server_default=func.now())
    valid_until = Column(DateTime(timezone=True), nullable=True)
