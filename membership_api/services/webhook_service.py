"""
Stripe webhook reconciliation.

Stripe delivers events at least once, possibly out of order. Each handled
event is treated as an assertion of the user's full membership state, derived
from the event payload alone, so re-applying it changes nothing:

- customer.subscription.deleted / invoice.payment_failed -> archive premium
  data, downgrade to free
- customer.subscription.updated / created with status=active -> restore
  archived data when coming back from free, upsert the paid plan

Every other event type is acknowledged without side effects. The event id is
recorded once processing succeeds, so exact duplicates short-circuit.
"""
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from membership_api.core.cache import StatusCache
from membership_api.core.catalog import FREE, ProductCatalog
from membership_api.core.errors import WebhookSignatureError
from membership_api.db.models.user import User
from membership_api.db.models.webhook_event import WebhookEvent
from membership_api.core.auth_dependency import get_user_by_email
from membership_api.services.membership_service import (
    activate_paid_plan,
    as_utc,
    downgrade_to_free,
    effective_plan,
    ensure_membership,
    utcnow,
)
from membership_api.services.status_service import get_status_reader, invalidate_user_status
from membership_api.services.stripe_gateway import (
    StripeGateway,
    extract_period_bounds,
    first_item_product_id,
    stripe_field,
    timestamp_to_datetime,
)

logger = logging.getLogger(__name__)

SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_CREATED = "customer.subscription.created"

DOWNGRADE_EVENTS = {SUBSCRIPTION_DELETED, INVOICE_PAYMENT_FAILED}
UPGRADE_EVENTS = {SUBSCRIPTION_UPDATED, SUBSCRIPTION_CREATED}


class WebhookProcessingError(Exception):
    """Verified event that failed partway; Stripe should retry it."""

    def __init__(self, event_id: str, event_type: str, user_id: Optional[int], cause: Exception):
        super().__init__(f"Processing failed for event {event_id} ({event_type}), user_id={user_id}: {cause}")
        self.event_id = event_id
        self.event_type = event_type
        self.user_id = user_id


def _invoice_subscription_id(invoice: Any) -> Optional[str]:
    """Subscription id of an invoice across API versions."""
    sub = stripe_field(invoice, "subscription")
    if sub is None:
        sub = stripe_field(invoice, "parent", "subscription_details", "subscription")
    if sub is None or isinstance(sub, str):
        return sub
    return stripe_field(sub, "id")


class WebhookReconciler:
    def __init__(
        self,
        catalog: ProductCatalog,
        cache: Optional[StatusCache] = None,
        now: Callable = utcnow,
    ):
        self.catalog = catalog
        self.cache = cache
        self._now = now

    def verify(self, gateway: StripeGateway, payload: bytes, sig_header: Optional[str]) -> Any:
        """Verify the signature and parse the event. Raises WebhookSignatureError."""
        return gateway.construct_event(payload, sig_header)

    def handle(self, db: Session, event: Any, gateway: StripeGateway) -> Dict[str, Any]:
        """
        Apply a verified event.

        Raises:
            WebhookSignatureError: if the event has no id or type
            WebhookProcessingError: if applying the event failed; nothing is committed
        """
        event_id = stripe_field(event, "id")
        event_type = stripe_field(event, "type")
        if not event_id or not event_type:
            raise WebhookSignatureError("Webhook event missing id or type")

        if event_type not in DOWNGRADE_EVENTS and event_type not in UPGRADE_EVENTS:
            logger.info(f"Ignoring webhook event: event_id={event_id}, type={event_type}")
            return {"processed": True, "handled": False, "event_id": event_id, "event_type": event_type}

        if db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).first() is not None:
            logger.info(f"Duplicate webhook event skipped: event_id={event_id}, type={event_type}")
            return {"processed": False, "duplicate": True, "event_id": event_id, "event_type": event_type}

        obj = stripe_field(event, "data", "object")
        event_time = timestamp_to_datetime(stripe_field(event, "created"))
        user: Optional[User] = None

        try:
            user = self._resolve_user(db, gateway, obj)
            if user is None:
                result = {"processed": True, "matched_user": False}
            elif event_type in DOWNGRADE_EVENTS:
                result = self._apply_downgrade(db, user, event_type, obj, event_time)
            else:
                result = self._apply_upgrade(db, user, obj, event_time, gateway)

            db.add(WebhookEvent(
                event_id=event_id,
                event_type=event_type,
                environment=gateway.environment.value,
                user_id=user.id if user else None,
            ))
            db.commit()
        except IntegrityError as e:
            db.rollback()
            if db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).first() is not None:
                logger.info(f"Concurrent duplicate webhook event: event_id={event_id}, type={event_type}")
                return {"processed": False, "duplicate": True, "event_id": event_id, "event_type": event_type}
            user_id = user.id if user else None
            logger.error(
                f"Webhook processing hit an integrity error, needs retry or manual reconcile: event_id={event_id}, "
                f"type={event_type}, user_id={user_id}, environment={gateway.environment.value}",
                exc_info=True,
            )
            raise WebhookProcessingError(event_id, event_type, user_id, e) from e
        except Exception as e:
            db.rollback()
            user_id = user.id if user else None
            logger.error(
                f"Webhook processing failed, needs retry or manual reconcile: event_id={event_id}, "
                f"type={event_type}, user_id={user_id}, environment={gateway.environment.value}",
                exc_info=True,
            )
            raise WebhookProcessingError(event_id, event_type, user_id, e) from e

        if user is not None and self.cache is not None:
            invalidate_user_status(self.cache, user.id)

        result.update({"event_id": event_id, "event_type": event_type})
        if user is not None:
            result["user_id"] = user.id
        return result

    def _resolve_user(self, db: Session, gateway: StripeGateway, obj: Any) -> Optional[User]:
        """Stripe customer -> email -> local user."""
        customer = stripe_field(obj, "customer")
        customer_id = customer if isinstance(customer, str) else stripe_field(customer, "id")
        if not customer_id:
            logger.warning("Webhook object has no customer")
            return None

        email = None if isinstance(customer, str) else stripe_field(customer, "email")
        if not email:
            email = stripe_field(gateway.retrieve_customer(customer_id), "email")
        if not email:
            logger.warning(f"Stripe customer has no email: customer_id={customer_id}")
            return None

        user = get_user_by_email(db, email)
        if user is None:
            logger.warning(f"No local user for Stripe customer: customer_id={customer_id}")
        return user

    def _apply_downgrade(self, db, user, event_type, obj, event_time) -> Dict[str, Any]:
        if event_type == INVOICE_PAYMENT_FAILED:
            subscription_id = _invoice_subscription_id(obj)
        else:
            subscription_id = stripe_field(obj, "id")

        membership = ensure_membership(db, user.id)
        current_sub = membership.stripe_subscription_id
        if subscription_id and current_sub and current_sub != subscription_id:
            logger.info(
                f"Stale downgrade ignored: user_id={user.id}, event_subscription={subscription_id}, "
                f"current_subscription={current_sub}"
            )
            return {"processed": True, "stale": True}

        now = self._now()
        downgrade_to_free(
            db,
            membership,
            now=now,
            payment_failed=event_type == INVOICE_PAYMENT_FAILED,
            effective_at=event_time,
        )
        logger.info(
            f"Downgraded to free: user_id={user.id}, subscription_id={subscription_id}, "
            f"payment_failed={event_type == INVOICE_PAYMENT_FAILED}"
        )
        return {"processed": True, "plan": FREE}

    def _apply_upgrade(self, db, user, obj, event_time, gateway) -> Dict[str, Any]:
        status = stripe_field(obj, "status")
        subscription_id = stripe_field(obj, "id")
        if status != "active":
            logger.info(f"Subscription not active, no change: user_id={user.id}, subscription_id={subscription_id}, status={status}")
            return {"processed": True, "handled": False, "status": status}

        product_id = first_item_product_id(obj)
        plan = self.catalog.plan_for(product_id, gateway.environment)
        if plan == FREE:
            logger.warning(f"Active subscription on unmapped product, no change: user_id={user.id}, product_id={product_id}")
            return {"processed": True, "handled": False, "product_id": product_id}

        membership = ensure_membership(db, user.id)
        downgraded_at = as_utc(membership.downgraded_at)
        if (
            effective_plan(membership) == FREE
            and event_time is not None
            and downgraded_at is not None
            and event_time < downgraded_at
        ):
            logger.info(
                f"Stale upgrade ignored (event predates downgrade): user_id={user.id}, "
                f"subscription_id={subscription_id}, event_time={event_time.isoformat()}"
            )
            return {"processed": True, "stale": True}

        period_start, period_end = extract_period_bounds(obj)
        restored = activate_paid_plan(
            db,
            membership,
            plan=plan,
            subscription_id=subscription_id,
            start_date=period_start,
            end_date=period_end,
            now=self._now(),
        )
        logger.info(
            f"Membership updated: user_id={user.id}, plan={plan}, subscription_id={subscription_id}, "
            f"restored_archive={restored}"
        )
        return {"processed": True, "plan": plan, "restored": restored}


_reconciler: Optional[WebhookReconciler] = None


def get_webhook_reconciler() -> WebhookReconciler:
    """FastAPI dependency. Shares the status reader's cache so reconciled users are re-read."""
    global _reconciler
    if _reconciler is None:
        reader = get_status_reader()
        _reconciler = WebhookReconciler(catalog=reader.catalog, cache=reader.cache)
    return _reconciler
