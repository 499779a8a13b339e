"""
Checkout orchestration.

Validates the requested price against Stripe before anything is created,
applies a validated promo discount, and returns the hosted Checkout URL.
Any failure aborts the whole attempt with a classified billing error.
"""
import logging
import re
from typing import Optional

from sqlalchemy.orm import Session

from membership_api.core.errors import AuthError, BillingError, InvalidPriceError, ValidationError
from membership_api.db.models.user import User
from membership_api.services.promo_service import validate_and_mint
from membership_api.services.stripe_gateway import StripeGateway, stripe_field

logger = logging.getLogger(__name__)

PRICE_ID_PATTERN = re.compile(r"^price_[A-Za-z0-9]+$")
DEFAULT_RETURN_PATH = "/membership"


def validate_price_id(price_id: Optional[str]) -> str:
    if not price_id or not PRICE_ID_PATTERN.match(price_id.strip()):
        raise InvalidPriceError(f"Malformed price id: {price_id!r}")
    return price_id.strip()


def normalize_return_path(return_path: Optional[str]) -> str:
    """
    Only site-relative paths are accepted so checkout can't be used as an open redirect.
    """
    if not return_path:
        return DEFAULT_RETURN_PATH
    path = return_path.strip()
    if not path.startswith("/") or path.startswith("//") or "\\" in path:
        raise ValidationError(f"Rejected return_path {return_path!r}", public_message="Invalid return path.")
    return path


def build_redirect_urls(base_url: str, return_path: str):
    """Success and cancel URLs, tagged so the UI can tell the outcome on return."""
    separator = "&" if "?" in return_path else "?"
    base = base_url.rstrip("/")
    success_url = f"{base}{return_path}{separator}subscription=success"
    cancel_url = f"{base}{return_path}{separator}subscription=canceled"
    return success_url, cancel_url


def create_checkout(
    db: Session,
    gateway: StripeGateway,
    user: Optional[User],
    price_id: str,
    promo_code: Optional[str] = None,
    return_path: Optional[str] = None,
) -> str:
    """
    Create a Stripe Checkout session for a subscription.

    Args:
        db: Database session (read-only here; promo codes are evaluated, not mutated)
        gateway: Stripe gateway for the request's environment
        user: Authenticated user
        price_id: Stripe price id to subscribe to
        promo_code: Optional promo code
        return_path: Site-relative path to return to after checkout

    Returns:
        Hosted checkout URL

    Raises:
        BillingError subclasses, classified by error_type
    """
    if user is None or not user.email:
        raise AuthError("Checkout requires an authenticated user with an email")

    price_id = validate_price_id(price_id)
    path = normalize_return_path(return_path)

    price = gateway.retrieve_price(price_id)
    if not stripe_field(price, "active", default=False):
        raise InvalidPriceError(f"Price {price_id} is not active")
    product = stripe_field(price, "product")
    product_id = product if isinstance(product, str) else stripe_field(product, "id")
    logger.info(f"Checkout price verified: user_id={user.id}, price_id={price_id}, product_id={product_id}")

    customer = gateway.find_customer_by_email(user.email)
    customer_id = stripe_field(customer, "id") if customer is not None else None
    if customer_id:
        logger.info(f"Found existing customer: user_id={user.id}, customer_id={customer_id}")

    metadata = {"user_id": str(user.id)}
    params: dict = {
        "mode": "subscription",
        "line_items": [{"price": price_id, "quantity": 1}],
        "client_reference_id": str(user.id),
        "metadata": metadata,
    }
    if customer_id:
        params["customer"] = customer_id
    else:
        params["customer_email"] = user.email

    if promo_code and promo_code.strip():
        discount = validate_and_mint(db, gateway, promo_code, product_id)
        params["discounts"] = [{"coupon": discount.coupon_id}]
        metadata["promo_code_id"] = str(discount.promo_id)
        metadata["promo_code"] = discount.code
        metadata["discount_value"] = str(discount.discount_value)

    success_url, cancel_url = build_redirect_urls(gateway.config.app_base_url, path)
    params["success_url"] = success_url
    params["cancel_url"] = cancel_url

    session = gateway.create_checkout_session(**params)
    url = stripe_field(session, "url")
    if not url:
        raise BillingError(f"Checkout session {stripe_field(session, 'id')} returned no url")

    logger.info(f"Created checkout session: session_id={stripe_field(session, 'id')}, user_id={user.id}, price_id={price_id}")
    return str(url)


def create_portal(gateway: StripeGateway, user: User, return_path: Optional[str] = None) -> Optional[str]:
    """
    Create a Stripe customer portal session.

    Returns:
        Portal URL, or None if the user has never been a Stripe customer
    """
    customer = gateway.find_customer_by_email(user.email)
    if customer is None:
        return None
    return_url = f"{gateway.config.app_base_url.rstrip('/')}{normalize_return_path(return_path)}"
    session = gateway.create_portal_session(stripe_field(customer, "id"), return_url)
    logger.info(f"Created portal session: user_id={user.id}, customer_id={stripe_field(customer, 'id')}")
    return str(stripe_field(session, "url"))
