from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.sql import func
from membership_api.db.base import Base


class ProfileView(Base):
    """Who viewed an athlete's profile. Premium data: archived on downgrade."""
    __tablename__ = "profile_views"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)  # profile owner
    viewer_id = Column(String, nullable=True)
    viewer_type = Column(String, nullable=True)  # recruiter | coach | athlete | anonymous
    viewed_at = Column(DateTime(timezone=True), server_default=func.now())
