"""
Admin membership management.
"""
import logging
from typing import Callable

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from membership_api.core.auth_dependency import get_admin_user, get_db
from membership_api.core.environment import Environment, get_request_environment
from membership_api.db.models.user import User
from membership_api.schemas.billing import SubscriptionStatusResponse
from membership_api.schemas.membership import AdminCancelRequest, AdminCancelResponse
from membership_api.services import admin_service
from membership_api.services.status_service import SubscriptionStatusReader, get_status_reader
from membership_api.services.stripe_gateway import StripeGateway, get_gateway_provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/memberships", tags=["Admin"])


@router.post("/{user_id}/sync", response_model=SubscriptionStatusResponse)
def sync_membership(
    user_id: int,
    admin: User = Depends(get_admin_user),
    environment: Environment = Depends(get_request_environment),
    gateway_for: Callable[[Environment], StripeGateway] = Depends(get_gateway_provider),
    reader: SubscriptionStatusReader = Depends(get_status_reader),
    db: Session = Depends(get_db),
):
    """Re-read a user's subscription from Stripe, bypassing the cache."""
    user = admin_service.get_user_or_404(db, user_id)
    logger.info(f"Admin sync requested: admin_id={admin.id}, user_id={user_id}")
    result = admin_service.sync_membership(db, reader, user, gateway_for(environment), environment)
    return result.as_response()


@router.post("/{user_id}/cancel", response_model=AdminCancelResponse)
def cancel_membership(
    user_id: int,
    body: AdminCancelRequest,
    admin: User = Depends(get_admin_user),
    environment: Environment = Depends(get_request_environment),
    gateway_for: Callable[[Environment], StripeGateway] = Depends(get_gateway_provider),
    reader: SubscriptionStatusReader = Depends(get_status_reader),
    db: Session = Depends(get_db),
):
    """Cancel a user's subscription at the end of the current period."""
    user = admin_service.get_user_or_404(db, user_id)
    logger.info(f"Admin cancel requested: admin_id={admin.id}, user_id={user_id}, subscription_id={body.subscription_id}")
    return admin_service.cancel_subscription(reader, user, gateway_for(environment), body.subscription_id)
