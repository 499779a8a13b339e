"""
Admin membership operations: force a resync from Stripe, cancel at period end.
"""
import logging
from typing import Any, Dict

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from membership_api.core.environment import Environment
from membership_api.db.models.user import User
from membership_api.services.status_service import (
    SubscriptionStatus,
    SubscriptionStatusReader,
    invalidate_user_status,
)
from membership_api.services.stripe_gateway import StripeGateway, stripe_field

logger = logging.getLogger(__name__)


def get_user_or_404(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def sync_membership(
    db: Session,
    reader: SubscriptionStatusReader,
    user: User,
    gateway: StripeGateway,
    environment: Environment,
) -> SubscriptionStatus:
    """Drop the cached status and re-read from Stripe; write-through repairs the record."""
    invalidate_user_status(reader.cache, user.id)
    result = reader.status_for(db, user, gateway, environment, use_cache=False)
    logger.info(f"Admin sync: user_id={user.id}, environment={environment.value}, subscribed={result.subscribed}")
    return result


def cancel_subscription(
    reader: SubscriptionStatusReader,
    user: User,
    gateway: StripeGateway,
    subscription_id: str,
) -> Dict[str, Any]:
    """
    Set cancel_at_period_end on a subscription owned by the user's Stripe customer.

    The membership itself is left alone; the customer.subscription.deleted
    webhook downgrades it when the period ends.
    """
    customer = gateway.find_customer_by_email(user.email)
    if customer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No billing customer for user")

    subscription = gateway.retrieve_subscription(subscription_id)
    owner = stripe_field(subscription, "customer")
    owner_id = owner if isinstance(owner, str) else stripe_field(owner, "id")
    if subscription is None or owner_id != stripe_field(customer, "id"):
        logger.warning(f"Admin cancel rejected, subscription not owned by user: user_id={user.id}, subscription_id={subscription_id}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found for user")

    updated = gateway.cancel_subscription_at_period_end(subscription_id)
    invalidate_user_status(reader.cache, user.id)
    logger.info(f"Admin cancel at period end: user_id={user.id}, subscription_id={subscription_id}")
    return {
        "subscription_id": stripe_field(updated, "id", default=subscription_id),
        "status": stripe_field(updated, "status"),
        "cancel_at_period_end": bool(stripe_field(updated, "cancel_at_period_end", default=False)),
    }
