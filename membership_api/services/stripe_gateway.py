"""
Stripe gateway bound to one environment.

Wraps the ``stripe`` library calls the billing service needs. The API key is
passed per request rather than through the ``stripe.api_key`` global because
sandbox and production requests are served by the same process. Stripe
exceptions are translated into the billing error taxonomy here so services
never import ``stripe`` error classes directly.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import stripe

from membership_api.core import config
from membership_api.core.environment import (
    Environment,
    StripeEnvironmentConfig,
    get_environment_config,
)
from membership_api.core.errors import (
    BillingError,
    ConfigError,
    InvalidPriceError,
    NetworkError,
    WebhookSignatureError,
)

logger = logging.getLogger(__name__)

_http_client_configured = False


def configure_stripe_http_client() -> None:
    """Apply the request timeout and retry policy to every Stripe call."""
    global _http_client_configured
    if _http_client_configured:
        return
    stripe.default_http_client = stripe.RequestsClient(timeout=config.STRIPE_API_TIMEOUT_SECONDS)
    stripe.max_network_retries = config.STRIPE_MAX_NETWORK_RETRIES
    _http_client_configured = True
    logger.info(
        f"Stripe HTTP client configured: timeout={config.STRIPE_API_TIMEOUT_SECONDS}s, "
        f"max_network_retries={config.STRIPE_MAX_NETWORK_RETRIES}"
    )


def stripe_field(obj: Any, *path: Any, default: Any = None) -> Any:
    """
    Read a nested field from a Stripe object or a plain dict.

    Item access is tried first because ``subscription.items`` collides with
    ``dict.items`` on Stripe objects.
    """
    current = obj
    for key in path:
        if current is None:
            return default
        try:
            current = current[key]
            continue
        except (KeyError, IndexError, TypeError):
            pass
        if isinstance(key, str):
            current = getattr(current, key, None)
        else:
            return default
    return default if current is None else current


def timestamp_to_datetime(ts: Any) -> Optional[datetime]:
    try:
        if ts is None:
            return None
        return datetime.fromtimestamp(int(ts), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def first_item_product_id(subscription: Any) -> Optional[str]:
    """Product id of the subscription's first item (expanded or not)."""
    product = stripe_field(subscription, "items", "data", 0, "price", "product")
    if product is None:
        return None
    if isinstance(product, str):
        return product
    return stripe_field(product, "id")


def extract_period_bounds(subscription: Any):
    """
    Billing period (start, end) as datetimes.

    Older API versions carry the period on the subscription, newer ones on
    each subscription item. Either value may be None.
    """
    start_ts = stripe_field(subscription, "current_period_start")
    end_ts = stripe_field(subscription, "current_period_end")

    if start_ts is None or end_ts is None:
        items = stripe_field(subscription, "items", "data", default=[]) or []
        starts, ends = [], []
        for item in items:
            if stripe_field(item, "current_period_start") is not None:
                starts.append(stripe_field(item, "current_period_start"))
            if stripe_field(item, "current_period_end") is not None:
                ends.append(stripe_field(item, "current_period_end"))
        if start_ts is None and starts:
            start_ts = min(starts)
        if end_ts is None and ends:
            end_ts = max(ends)

    return timestamp_to_datetime(start_ts), timestamp_to_datetime(end_ts)


class StripeGateway:
    def __init__(self, env_config: StripeEnvironmentConfig):
        self.config = env_config
        self.environment = env_config.environment

    @classmethod
    def for_environment(cls, environment: Environment) -> "StripeGateway":
        configure_stripe_http_client()
        return cls(get_environment_config(environment))

    def _call(self, description: str, fn: Callable, *args, **kwargs):
        try:
            return fn(*args, api_key=self.config.secret_key, **kwargs)
        except (stripe.AuthenticationError, stripe.PermissionError) as e:
            logger.error(f"Stripe rejected credentials during {description} ({self.environment.value}): {e}")
            raise ConfigError(f"Stripe credentials rejected during {description}") from e
        except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as e:
            logger.warning(f"Transient Stripe failure during {description} ({self.environment.value}): {e}")
            raise NetworkError(f"Stripe unavailable during {description}: {e}") from e

    # Customers

    def find_customer_by_email(self, email: str) -> Optional[Any]:
        try:
            result = self._call("customer lookup", stripe.Customer.list, email=email, limit=1)
        except stripe.StripeError as e:
            raise BillingError(f"Customer lookup failed: {e}") from e
        customers = stripe_field(result, "data", default=[]) or []
        return customers[0] if customers else None

    def retrieve_customer(self, customer_id: str) -> Any:
        try:
            return self._call("customer retrieve", stripe.Customer.retrieve, customer_id)
        except stripe.StripeError as e:
            raise BillingError(f"Customer retrieve failed for {customer_id}: {e}") from e

    # Prices

    def retrieve_price(self, price_id: str) -> Any:
        try:
            return self._call("price retrieve", stripe.Price.retrieve, price_id)
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                raise InvalidPriceError(f"Price {price_id} does not exist") from e
            raise BillingError(f"Price retrieve failed for {price_id}: {e}") from e
        except stripe.StripeError as e:
            raise BillingError(f"Price retrieve failed for {price_id}: {e}") from e

    # Subscriptions

    def list_active_subscriptions(self, customer_id: str, limit: int = 1) -> list:
        try:
            result = self._call(
                "subscription list", stripe.Subscription.list,
                customer=customer_id, status="active", limit=limit,
            )
        except stripe.StripeError as e:
            raise BillingError(f"Subscription list failed for {customer_id}: {e}") from e
        return list(stripe_field(result, "data", default=[]) or [])

    def retrieve_subscription(self, subscription_id: str) -> Optional[Any]:
        """Returns None if the subscription does not exist."""
        try:
            return self._call("subscription retrieve", stripe.Subscription.retrieve, subscription_id)
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                return None
            raise BillingError(f"Subscription retrieve failed for {subscription_id}: {e}") from e
        except stripe.StripeError as e:
            raise BillingError(f"Subscription retrieve failed for {subscription_id}: {e}") from e

    def cancel_subscription_at_period_end(self, subscription_id: str) -> Any:
        try:
            return self._call(
                "subscription cancel", stripe.Subscription.modify,
                subscription_id, cancel_at_period_end=True,
            )
        except stripe.StripeError as e:
            raise BillingError(f"Subscription cancel failed for {subscription_id}: {e}") from e

    # Coupons

    def retrieve_coupon(self, coupon_id: str) -> Optional[Any]:
        """
        Fetch a coupon by id.

        Returns None only when Stripe says the coupon does not exist. Every
        other failure propagates so it is never mistaken for "needs creating".
        """
        try:
            return self._call("coupon retrieve", stripe.Coupon.retrieve, coupon_id)
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                return None
            raise BillingError(f"Coupon retrieve failed for {coupon_id}: {e}") from e
        except stripe.StripeError as e:
            raise BillingError(f"Coupon retrieve failed for {coupon_id}: {e}") from e

    def create_coupon(self, **params) -> Optional[Any]:
        """Create a coupon. Returns None if a coupon with the same id already exists."""
        try:
            return self._call("coupon create", stripe.Coupon.create, **params)
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_already_exists":
                return None
            raise BillingError(f"Coupon create failed for {params.get('id')}: {e}") from e
        except stripe.StripeError as e:
            raise BillingError(f"Coupon create failed for {params.get('id')}: {e}") from e

    # Sessions

    def create_checkout_session(self, **params) -> Any:
        try:
            return self._call("checkout session create", stripe.checkout.Session.create, **params)
        except stripe.StripeError as e:
            raise BillingError(f"Checkout session create failed: {e}") from e

    def create_portal_session(self, customer_id: str, return_url: str) -> Any:
        try:
            return self._call(
                "portal session create", stripe.billing_portal.Session.create,
                customer=customer_id, return_url=return_url,
            )
        except stripe.StripeError as e:
            raise BillingError(f"Portal session create failed: {e}") from e

    # Webhooks

    def construct_event(self, payload: bytes, sig_header: Optional[str]) -> Any:
        if not self.config.webhook_secret:
            logger.error(f"Webhook secret missing for environment={self.environment.value}")
            raise ConfigError("Stripe webhook secret not configured")
        if not sig_header:
            raise WebhookSignatureError("Missing Stripe-Signature header")
        try:
            return stripe.Webhook.construct_event(payload, sig_header, self.config.webhook_secret)
        except ValueError as e:
            logger.error(f"Invalid webhook payload: {e}")
            raise WebhookSignatureError(f"Invalid webhook payload: {e}") from e
        except stripe.SignatureVerificationError as e:
            logger.error(f"Webhook signature verification failed: {e}")
            raise WebhookSignatureError(f"Invalid signature: {e}") from e


def get_gateway_provider() -> Callable[[Environment], StripeGateway]:
    """
    FastAPI dependency returning a gateway factory.

    A factory rather than a gateway so endpoints that can answer without
    Stripe (anonymous status checks) never trip over missing credentials.
    """
    return StripeGateway.for_environment
