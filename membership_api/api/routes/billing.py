"""
Billing endpoints: checkout, subscription status and the customer portal.

Failures surface as BillingError subclasses and are rendered by the app-level
handler as {error, error_type} with the error's status code.
"""
import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from membership_api.core.auth_dependency import get_current_user_obj, get_db, get_optional_user_obj
from membership_api.core.environment import Environment, get_request_environment
from membership_api.db.models.user import User
from membership_api.schemas.billing import (
    BillingErrorResponse,
    CheckoutRequest,
    CheckoutResponse,
    PortalRequest,
    PortalResponse,
    SubscriptionStatusResponse,
)
from membership_api.services.checkout_service import create_checkout, create_portal
from membership_api.services.status_service import NOT_SUBSCRIBED, SubscriptionStatusReader, get_status_reader
from membership_api.services.stripe_gateway import StripeGateway, get_gateway_provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])

ERROR_RESPONSES = {
    400: {"model": BillingErrorResponse},
    401: {"model": BillingErrorResponse},
    500: {"model": BillingErrorResponse},
    502: {"model": BillingErrorResponse},
    503: {"model": BillingErrorResponse},
}


@router.post("/checkout", response_model=CheckoutResponse, responses=ERROR_RESPONSES)
def checkout(
    body: CheckoutRequest,
    user: Optional[User] = Depends(get_optional_user_obj),
    environment: Environment = Depends(get_request_environment),
    gateway_for: Callable[[Environment], StripeGateway] = Depends(get_gateway_provider),
    db: Session = Depends(get_db),
):
    """
    Create a Stripe Checkout session for a subscription plan.

    The price is verified with Stripe before anything is created. A promo code,
    when given, must validate for the price's product or checkout is refused.
    """
    logger.info(f"Checkout requested: user_id={user.id if user else None}, environment={environment.value}, price_id={body.price_id}")
    url = create_checkout(
        db,
        gateway_for(environment),
        user,
        price_id=body.price_id,
        promo_code=body.promo_code,
        return_path=body.return_path,
    )
    return CheckoutResponse(url=url)


@router.get("/status", response_model=SubscriptionStatusResponse, responses=ERROR_RESPONSES)
def subscription_status(
    user: Optional[User] = Depends(get_optional_user_obj),
    environment: Environment = Depends(get_request_environment),
    gateway_for: Callable[[Environment], StripeGateway] = Depends(get_gateway_provider),
    reader: SubscriptionStatusReader = Depends(get_status_reader),
    db: Session = Depends(get_db),
):
    """
    Current subscription status for the caller.

    Anonymous callers get the not-subscribed payload without touching Stripe.
    """
    if user is None:
        return NOT_SUBSCRIBED.as_response()

    result = reader.status_for(db, user, gateway_for(environment), environment)
    return result.as_response()


@router.post("/portal", response_model=PortalResponse, responses=ERROR_RESPONSES)
def billing_portal(
    body: PortalRequest,
    user: User = Depends(get_current_user_obj),
    environment: Environment = Depends(get_request_environment),
    gateway_for: Callable[[Environment], StripeGateway] = Depends(get_gateway_provider),
):
    """Stripe customer portal for managing payment methods and cancellation."""
    url = create_portal(gateway_for(environment), user, return_path=body.return_path)
    if url is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No billing account found. Subscribe to a plan first."
        )
    return PortalResponse(url=url)
