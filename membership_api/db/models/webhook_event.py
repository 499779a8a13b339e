from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from membership_api.db.base import Base


class WebhookEvent(Base):
    """
    Stripe events that have been fully applied.

    Written only after processing succeeds, so a failed delivery leaves no
    row and Stripe's retry runs the remaining steps.
    """
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String, unique=True, index=True, nullable=False)
    event_type = Column(String, nullable=False)
    environment = Column(String, nullable=False)
    user_id = Column(Integer, nullable=True, index=True)
    processed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
