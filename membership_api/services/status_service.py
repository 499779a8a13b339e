"""
Subscription status reader.

Answers "is this user subscribed, to what, until when" from Stripe, behind a
short-TTL read-through cache. Each uncached read also writes the answer
through to the membership record, so a status check repairs local state after
a missed webhook.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from membership_api.core import config
from membership_api.core.cache import StatusCache
from membership_api.core.catalog import FREE, ProductCatalog, get_catalog
from membership_api.core.environment import Environment
from membership_api.db.models.user import User
from membership_api.services.membership_service import activate_paid_plan, ensure_membership, utcnow
from membership_api.services.stripe_gateway import (
    StripeGateway,
    extract_period_bounds,
    first_item_product_id,
    stripe_field,
)

logger = logging.getLogger(__name__)

FALLBACK_PERIOD = timedelta(days=365)


@dataclass(frozen=True)
class SubscriptionStatus:
    subscribed: bool
    product_id: Optional[str] = None
    valid_until: Optional[datetime] = None
    used_fallback_end: bool = False

    def as_response(self) -> dict:
        return {
            "subscribed": self.subscribed,
            "product_id": self.product_id,
            "subscription_end": self.valid_until.isoformat() if self.valid_until else None,
        }


NOT_SUBSCRIBED = SubscriptionStatus(subscribed=False)


def status_cache_key(environment: Environment, user_id: int) -> tuple:
    return (environment.value, user_id)


def invalidate_user_status(cache: StatusCache, user_id: int) -> None:
    """Drop a user's cached status in every environment."""
    for environment in Environment:
        cache.invalidate(status_cache_key(environment, user_id))


class SubscriptionStatusReader:
    def __init__(
        self,
        cache: StatusCache,
        catalog: ProductCatalog,
        now: Callable[[], datetime] = utcnow,
    ):
        self.cache = cache
        self.catalog = catalog
        self._now = now

    def status_for(
        self,
        db: Session,
        user: User,
        gateway: StripeGateway,
        environment: Environment,
        use_cache: bool = True,
    ) -> SubscriptionStatus:
        if use_cache:
            cached = self.cache.get(status_cache_key(environment, user.id))
            if cached is not None:
                logger.debug(f"Status cache hit: user_id={user.id}")
                return cached

        customer = gateway.find_customer_by_email(user.email)
        if customer is None:
            logger.info(f"No Stripe customer: user_id={user.id}")
            self.cache.set(status_cache_key(environment, user.id), NOT_SUBSCRIBED)
            return NOT_SUBSCRIBED

        customer_id = stripe_field(customer, "id")
        subscriptions = gateway.list_active_subscriptions(customer_id, limit=1)
        if not subscriptions:
            logger.info(f"No active subscription: user_id={user.id}, customer_id={customer_id}")
            self.cache.set(status_cache_key(environment, user.id), NOT_SUBSCRIBED)
            return NOT_SUBSCRIBED

        subscription = subscriptions[0]
        product_id = first_item_product_id(subscription)
        period_start, period_end = extract_period_bounds(subscription)

        used_fallback = False
        if period_end is None:
            period_end = self._now() + FALLBACK_PERIOD
            used_fallback = True
            logger.warning(
                f"FALLBACK subscription end used (period end unusable): user_id={user.id}, "
                f"subscription_id={stripe_field(subscription, 'id')}, fallback_end={period_end.isoformat()}"
            )

        status = SubscriptionStatus(
            subscribed=True,
            product_id=product_id,
            valid_until=period_end,
            used_fallback_end=used_fallback,
        )

        self._write_through(db, user, subscription, product_id, period_start, period_end, environment)
        self.cache.set(status_cache_key(environment, user.id), status)
        logger.info(
            f"Active subscription: user_id={user.id}, subscription_id={stripe_field(subscription, 'id')}, "
            f"product_id={product_id}, end={period_end.isoformat()}"
        )
        return status

    def _write_through(self, db, user, subscription, product_id, period_start, period_end, environment) -> None:
        plan = self.catalog.plan_for(product_id, environment)
        if plan == FREE:
            # Active in Stripe but not a membership product; nothing to mirror.
            logger.warning(f"Active subscription on unmapped product: user_id={user.id}, product_id={product_id}")
            return

        try:
            membership = ensure_membership(db, user.id)
            activate_paid_plan(
                db,
                membership,
                plan=plan,
                subscription_id=stripe_field(subscription, "id"),
                start_date=period_start,
                end_date=period_end,
                now=self._now(),
            )
            db.commit()
            logger.info(f"Membership synced from status check: user_id={user.id}, plan={plan}")
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Membership write-through failed: user_id={user.id}, plan={plan}: {e}", exc_info=True)


_reader: Optional[SubscriptionStatusReader] = None


def get_status_reader() -> SubscriptionStatusReader:
    """FastAPI dependency: process-wide reader sharing one cache."""
    global _reader
    if _reader is None:
        _reader = SubscriptionStatusReader(
            cache=StatusCache(ttl_seconds=config.STATUS_CACHE_TTL_SECONDS),
            catalog=get_catalog(),
        )
    return _reader
