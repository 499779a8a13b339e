from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Index
from sqlalchemy.sql import func
from membership_api.db.base import Base


class Membership(Base):
    """
    Membership record. One logical row per user; the latest active row is current.

    archived_data holds the snapshot taken on downgrade:
        {"saved_matches": [...], "profile_views": [...],
         "archived_at": iso8601, "restore_until": iso8601}
    """
    __tablename__ = "memberships"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    plan = Column(String, default="free", nullable=False)  # free | pro_monthly | championship_yearly | recruiter_monthly | recruiter_yearly
    tier = Column(String, default="free", nullable=False)  # free | premium | college_scout
    status = Column(String, default="active", nullable=False)  # active | inactive

    stripe_subscription_id = Column(String, nullable=True, index=True)
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)

    payment_failed_at = Column(DateTime(timezone=True), nullable=True)
    downgraded_at = Column(DateTime(timezone=True), nullable=True)
    archived_data = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('idx_membership_user_status_created', 'user_id', 'status', 'created_at'),
    )
