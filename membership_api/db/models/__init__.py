"""
Database models module.

This module imports all database models to ensure they are registered with SQLAlchemy's Base.metadata
before table creation.

All models must be imported here to be included in database migrations and table creation.
"""
from membership_api.db.models.user import User
from membership_api.db.models.membership import Membership
from membership_api.db.models.saved_match import SavedMatch
from membership_api.db.models.profile_view import ProfileView
from membership_api.db.models.promo_code import PromoCode
from membership_api.db.models.webhook_event import WebhookEvent

__all__ = [
    "User",
    "Membership",
    "SavedMatch",
    "ProfileView",
    "PromoCode",
    "WebhookEvent",
]
